from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.rules.base_rule import DiagnosticRule, container_source


class IncompleteContainerStatusRule(DiagnosticRule):
    """
    The provider returned a container status with no waiting, running or
    terminated state. Diagnosis continues with what is known.
    """

    name = "IncompleteContainerStatus"
    category = "Data"
    severity = "info"
    priority = 90

    def _incomplete(self, ctx):
        return [cs for cs in ctx.pod.container_statuses if not cs.has_state]

    def matches(self, ctx) -> bool:
        return bool(self._incomplete(ctx))

    def diagnose(self, ctx):
        return [
            self.make(
                DiagnosisKind.INSUFFICIENT_DATA,
                "Container status is missing its state; diagnosis may be incomplete",
                [
                    Evidence(
                        source=container_source(cs.name, "state"),
                        detail=f"Container '{cs.name}' reports no waiting/running/terminated state",
                    )
                    for cs in self._incomplete(ctx)
                ],
            )
        ]
