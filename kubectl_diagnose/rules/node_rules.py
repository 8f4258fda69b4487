from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.rules.base_rule import DiagnosticRule

PRESSURE_CONDITIONS = ("MemoryPressure", "DiskPressure", "PIDPressure", "NetworkUnavailable")


class NodePressureRule(DiagnosticRule):
    """
    Node hosting the Pod reports resource pressure or an unavailable
    network. Applies in every phase.
    """

    name = "NodePressure"
    category = "Node"
    priority = 55
    requires = ["pod", "node"]

    def _pressured(self, ctx):
        return [c for c in ctx.node.conditions if c.type in PRESSURE_CONDITIONS and c.status == "True"]

    def matches(self, ctx) -> bool:
        return bool(self._pressured(ctx))

    def diagnose(self, ctx):
        evidence = []
        for c in self._pressured(ctx):
            detail = f"Node {ctx.node.name} {c.type}=True"
            if c.message:
                detail = f"{detail}: {c.message}"
            evidence.append(
                Evidence(source=f"node[{ctx.node.name}].conditions[{c.type}]", detail=detail)
            )
        return [
            self.make(
                DiagnosisKind.NODE_PRESSURE,
                f"Node {ctx.node.name} reports resource pressure",
                evidence,
            )
        ]
