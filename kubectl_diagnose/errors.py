class DiagnoseError(Exception):
    """
    Base class for every failure that ends a diagnostic run.

    `kind` is the stable taxonomy name printed by the CLI and placed
    in the `error` field of structured output.
    """

    kind = "DiagnoseError"

    def __init__(self, message: str, *, subject: str | None = None):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


# ----------------------------
# Raised by Cluster State Providers
# ----------------------------


class ProviderError(DiagnoseError):
    kind = "ProviderError"


class NotFound(ProviderError):
    kind = "NotFound"


class Unavailable(ProviderError):
    kind = "Unavailable"


# ----------------------------
# Terminal for one run
# ----------------------------


class ProviderUnavailable(DiagnoseError):
    kind = "ProviderUnavailable"


class ProviderTimeout(DiagnoseError):
    kind = "ProviderTimeout"


class SubjectNotFound(DiagnoseError):
    kind = "SubjectNotFound"


class MalformedSnapshot(DiagnoseError):
    kind = "MalformedSnapshot"
