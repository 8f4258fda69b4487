from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.rules.base_rule import (
    DiagnosticRule,
    container_source,
    event_evidence,
)

# Exit codes as reported by container runtimes; 128+N means killed by signal N.
EXIT_CODE_HINTS = {
    0: "exited successfully but is expected to keep running",
    1: "application error",
    2: "misuse of shell builtin or invalid arguments",
    126: "command found but not executable",
    127: "command not found",
    137: "killed by SIGKILL, usually the OOM killer",
    139: "segmentation fault",
    143: "terminated by SIGTERM",
}

IMAGE_PULL_REASONS = ("ErrImagePull", "ImagePullBackOff", "InvalidImageName", "ErrImageNeverPull")

BAD_REFERENCE_MARKERS = (
    "repository not found",
    "manifest unknown",
    ": not found",
    "does not exist",
    "invalid reference format",
)

AUTH_MARKERS = (
    "unauthorized",
    "authentication required",
    "access denied",
    "denied",
    "no basic auth credentials",
)

CONFIG_ERROR_REASONS = ("CreateContainerConfigError", "CreateContainerError", "RunContainerError")


def _crashlooping(ctx):
    return [
        cs for cs in ctx.pod.waiting_containers() if cs.waiting_reason == "CrashLoopBackOff"
    ]


def _is_image_pull(reason: str | None) -> bool:
    return bool(reason) and (reason in IMAGE_PULL_REASONS or reason.startswith("ImagePull"))


def describe_exit_code(code: int | None) -> str:
    if code is None:
        return "exit code unknown"
    hint = EXIT_CODE_HINTS.get(code)
    if hint is None and code > 128:
        hint = f"killed by signal {code - 128}"
    return f"exit code {code} ({hint or 'application-defined'})"


class CrashLoopOOMRule(DiagnosticRule):
    """
    CrashLoopBackOff where the previous run was ended by the OOM killer.

    Signals (any of):
    - An event with reason OOMKilled
    - lastState.terminated.reason == OOMKilled
    - last exit code 137
    """

    name = "CrashLoopOOM"
    category = "Container"
    severity = "critical"
    priority = 20
    phases = ["Pending", "Running"]

    def _oom_containers(self, ctx):
        oom_event = bool(ctx.timeline.with_reason("OOMKilled"))
        return [
            cs
            for cs in _crashlooping(ctx)
            if oom_event
            or "OOMKilled" in cs.termination_reasons
            or cs.last_exit_code == 137
        ]

    def matches(self, ctx) -> bool:
        return bool(self._oom_containers(ctx))

    def diagnose(self, ctx):
        evidence = []
        for cs in self._oom_containers(ctx):
            evidence.append(
                Evidence(
                    source=container_source(cs.name, "state.waiting.reason"),
                    detail=f"Container '{cs.name}' waiting: reason=CrashLoopBackOff",
                )
            )
            if cs.last_termination_reason or cs.last_exit_code is not None:
                evidence.append(
                    Evidence(
                        source=container_source(cs.name, "lastState.terminated"),
                        detail=(
                            f"Container '{cs.name}' last terminated: "
                            f"reason={cs.last_termination_reason or 'unknown'}, "
                            f"{describe_exit_code(cs.last_exit_code)}"
                        ),
                    )
                )
        evidence.extend(event_evidence(e) for e in ctx.timeline.with_reason("OOMKilled"))
        return [
            self.make(
                DiagnosisKind.OOM_KILLED,
                "Container is crash-looping because it exceeds its memory limit",
                evidence,
            )
        ]


class CrashLoopBackOffRule(DiagnosticRule):
    """
    Generic CrashLoopBackOff. The exit code of the last run is used to
    sub-classify the crash in the evidence.
    """

    name = "CrashLoopBackOff"
    category = "Container"
    severity = "critical"
    priority = 21
    phases = ["Pending", "Running"]

    def matches(self, ctx) -> bool:
        return bool(_crashlooping(ctx))

    def diagnose(self, ctx):
        evidence = []
        for cs in _crashlooping(ctx):
            evidence.append(
                Evidence(
                    source=container_source(cs.name, "state.waiting.reason"),
                    detail=(
                        f"Container '{cs.name}' waiting: reason=CrashLoopBackOff, "
                        f"restarts={cs.restart_count}"
                    ),
                )
            )
            evidence.append(
                Evidence(
                    source=container_source(cs.name, "lastState.terminated.exitCode"),
                    detail=f"Container '{cs.name}' last run: {describe_exit_code(cs.last_exit_code)}",
                )
            )
        evidence.extend(event_evidence(e) for e in ctx.timeline.with_reason("BackOff"))
        return [
            self.make(
                DiagnosisKind.CRASH_LOOP,
                "Container keeps exiting shortly after start and is in CrashLoopBackOff",
                evidence,
            )
        ]


class ImagePullFailureRule(DiagnosticRule):
    """
    Image pull failures, sub-classified from the pull error text found in
    events or the container's waiting message:

    - "repository not found" and similar -> BadImageReference
    - "unauthorized" and similar         -> AuthFailure
    - anything else                      -> NetworkOrRegistryUnavailable
    """

    name = "ImagePullFailure"
    category = "ImagePullFailure"
    severity = "critical"
    priority = 22
    phases = ["Pending", "Running"]

    def _pulling(self, ctx):
        return [cs for cs in ctx.pod.waiting_containers() if _is_image_pull(cs.waiting_reason)]

    def matches(self, ctx) -> bool:
        return bool(self._pulling(ctx))

    def _classify(self, messages: list[str]) -> DiagnosisKind:
        text = " ".join(messages).lower()
        if any(m in text for m in BAD_REFERENCE_MARKERS):
            return DiagnosisKind.BAD_IMAGE_REFERENCE
        if any(m in text for m in AUTH_MARKERS):
            return DiagnosisKind.AUTH_FAILURE
        return DiagnosisKind.NETWORK_OR_REGISTRY_UNAVAILABLE

    def diagnose(self, ctx):
        markers = ("image", "pull") + BAD_REFERENCE_MARKERS + AUTH_MARKERS
        pull_events = [
            e
            for e in ctx.timeline.events
            if _is_image_pull(e.reason) or any(m in e.message.lower() for m in markers)
        ]

        summaries = {
            DiagnosisKind.BAD_IMAGE_REFERENCE: "Image reference does not exist in the registry",
            DiagnosisKind.AUTH_FAILURE: "Registry rejected the image pull credentials",
            DiagnosisKind.NETWORK_OR_REGISTRY_UNAVAILABLE: "Image registry could not be reached",
        }

        # One diagnosis per sub-kind, containers grouped under it
        grouped: dict[DiagnosisKind, list[Evidence]] = {}
        for cs in self._pulling(ctx):
            messages = [cs.waiting_message or ""] + [e.message for e in pull_events]
            evidence = grouped.setdefault(self._classify(messages), [])
            evidence.append(
                Evidence(
                    source=container_source(cs.name, "state.waiting.reason"),
                    detail=f"Container '{cs.name}' waiting: reason={cs.waiting_reason}",
                )
            )
            if cs.waiting_message:
                evidence.append(
                    Evidence(
                        source=container_source(cs.name, "state.waiting.message"),
                        detail=cs.waiting_message,
                    )
                )

        return [
            self.make(kind, summaries[kind], evidence + [event_evidence(e) for e in pull_events])
            for kind, evidence in grouped.items()
        ]


class ContainerConfigErrorRule(DiagnosticRule):
    """
    Container cannot be created or started because of its configuration:
    missing ConfigMap/Secret keys, invalid command or entrypoint.
    """

    name = "ContainerConfigError"
    category = "Container"
    severity = "critical"
    priority = 23
    phases = ["Pending", "Running"]

    def _failing(self, ctx):
        return [
            cs for cs in ctx.pod.waiting_containers() if cs.waiting_reason in CONFIG_ERROR_REASONS
        ]

    def matches(self, ctx) -> bool:
        return bool(self._failing(ctx))

    def diagnose(self, ctx):
        evidence = []
        for cs in self._failing(ctx):
            detail = f"Container '{cs.name}' waiting: reason={cs.waiting_reason}"
            if cs.waiting_message:
                detail = f"{detail}, message={cs.waiting_message}"
            evidence.append(
                Evidence(source=container_source(cs.name, "state.waiting"), detail=detail)
            )
        return [
            self.make(
                DiagnosisKind.CONTAINER_CONFIG_ERROR,
                "Container could not be created from its configuration",
                evidence,
            )
        ]
