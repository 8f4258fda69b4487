from dataclasses import dataclass, field
from typing import Literal

from kubectl_diagnose.config import DiagnoseConfig
from kubectl_diagnose.diagnosis import Diagnosis, DiagnosisKind, Evidence
from kubectl_diagnose.model import (
    EventRecord,
    NetworkPolicySet,
    NodeSnapshot,
    PodSnapshot,
    ServiceTopology,
)
from kubectl_diagnose.timeline import Timeline


@dataclass(frozen=True)
class RuleContext:
    """
    Everything a rule may look at for one subject. Built once per
    classify() call and shared read-only by all rules.
    """

    pod: PodSnapshot | None
    events: tuple[EventRecord, ...]
    timeline: Timeline
    node: NodeSnapshot | None = None
    service: ServiceTopology | None = None
    policies: NetworkPolicySet | None = None
    config: DiagnoseConfig = field(default_factory=DiagnoseConfig)

    def available(self) -> set[str]:
        present = {"events"}
        for key in ("pod", "node", "service", "policies"):
            if getattr(self, key) is not None:
                present.add(key)
        return present


class DiagnosticRule:
    """
    Base class for all diagnostic rules.
    """

    # ---- Metadata (mandatory) ----
    name: str = "BaseRule"
    category: str = "Generic"
    severity: Literal["info", "warning", "critical"] = "warning"
    priority: int = 100  # rank; lower evaluates and sorts first

    # ---- Optional execution hints ----
    phases: list[str] = []  # e.g. ["Pending", "Running"]

    # ---- Contract requirements ----
    requires: list[str] = ["pod"]  # subset of pod, events, node, service, policies

    def matches(self, ctx: RuleContext) -> bool:
        raise NotImplementedError

    def diagnose(self, ctx: RuleContext) -> list[Diagnosis]:
        """
        Must return one or more Diagnosis objects. A rule may emit
        several when it sub-classifies per container.
        """
        raise NotImplementedError

    def make(
        self,
        kind: DiagnosisKind,
        summary: str,
        evidence: list[Evidence],
        *,
        severity: str | None = None,
        category: str | None = None,
    ) -> Diagnosis:
        return Diagnosis(
            kind=kind,
            rank=self.priority,
            rule=self.name,
            summary=summary,
            category=category or self.category,
            severity=severity or self.severity,
            evidence=tuple(evidence),
        )


def container_source(cs_name: str, path: str) -> str:
    return f"pod.status.containerStatuses[{cs_name}].{path}"


def event_evidence(event: EventRecord) -> Evidence:
    if event.reason and event.message:
        detail = f"{event.reason}: {event.message}"
    else:
        detail = event.message or event.reason
    if event.count > 1:
        detail = f"{detail} (x{event.count})"
    return Evidence(source=f"event[{event.reason or 'unknown'}]", detail=detail)
