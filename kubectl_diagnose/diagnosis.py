from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

Severity = Literal["info", "warning", "critical"]

SEVERITY_LEVELS = ("info", "warning", "critical")


class DiagnosisKind(str, Enum):
    # Scheduling
    RESOURCE_CONSTRAINT = "ResourceConstraint"
    NODE_AFFINITY_CONSTRAINT = "NodeAffinityConstraint"
    VOLUME_UNBOUND = "VolumeUnbound"
    CONTROL_PLANE_HEALTH_UNKNOWN = "ControlPlaneHealthUnknown"

    # Container runtime
    OOM_KILLED = "OOMKilled"
    CRASH_LOOP = "CrashLoop"
    BAD_IMAGE_REFERENCE = "BadImageReference"
    AUTH_FAILURE = "AuthFailure"
    NETWORK_OR_REGISTRY_UNAVAILABLE = "NetworkOrRegistryUnavailable"
    CONTAINER_CONFIG_ERROR = "ContainerConfigError"
    READINESS_FAILURE = "ReadinessFailure"
    APPLICATION_CRASH = "ApplicationCrash"

    # Node
    NODE_COMMUNICATION_FAILURE = "NodeCommunicationFailure"
    NODE_PRESSURE = "NodePressure"

    # Service / network path
    SELECTOR_MISMATCH_OR_PROBE_FAILURE = "SelectorMismatchOrProbeFailure"
    SELECTOR_MATCHES_NO_PODS = "SelectorMatchesNoPods"
    BACKENDS_NOT_READY = "BackendsNotReady"
    POLICY_MAY_BLOCK_TRAFFIC = "PolicyMayBlockTraffic"

    INSUFFICIENT_DATA = "InsufficientData"


@dataclass(frozen=True)
class Evidence:
    """
    Pointer to the snapshot field or event that triggered a diagnosis.
    """

    source: str
    detail: str


@dataclass(frozen=True)
class Recommendation:
    kind: DiagnosisKind
    title: str
    actions: tuple[str, ...]
    references: tuple[str, ...] = ()


@dataclass(frozen=True)
class Diagnosis:
    """
    One root-cause hypothesis, with its rank and the evidence behind it.
    """

    kind: DiagnosisKind
    rank: int
    rule: str
    summary: str
    category: str = "Generic"
    severity: Severity = "warning"
    evidence: tuple[Evidence, ...] = ()
    recommendation: Recommendation | None = None

    def __post_init__(self):
        if self.severity not in SEVERITY_LEVELS:
            raise ValueError(f"Diagnosis severity '{self.severity}' is not one of {SEVERITY_LEVELS}")

    def with_recommendation(self, recommendation: Recommendation) -> "Diagnosis":
        return replace(self, recommendation=recommendation)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        if self.recommendation is not None:
            data["recommendation"]["kind"] = self.recommendation.kind.value
            data["recommendation"]["actions"] = list(self.recommendation.actions)
            data["recommendation"]["references"] = list(self.recommendation.references)
        data["evidence"] = [asdict(e) for e in self.evidence]
        return data


@dataclass(frozen=True)
class SubjectRef:
    kind: Literal["pod", "service"]
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class DiagnosticReport:
    subject: SubjectRef
    mode: str
    diagnoses: tuple[Diagnosis, ...]
    snapshots: dict[str, Any] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    consistency: str = "best-effort consistent, not atomic"

    @property
    def healthy(self) -> bool:
        return all(d.severity == "info" for d in self.diagnoses)

    def kinds(self) -> list[DiagnosisKind]:
        return [d.kind for d in self.diagnoses]

    def snapshot_refs(self) -> list[dict[str, Any]]:
        """Kinds and names of the objects the diagnosis was built from."""
        refs: list[dict[str, Any]] = []
        pod = self.snapshots.get("pod")
        if pod is not None:
            refs.append({"kind": "Pod", "namespace": pod.namespace, "name": pod.name})
        events = self.snapshots.get("events")
        if events is not None:
            refs.append({"kind": "Event", "count": len(events)})
        node = self.snapshots.get("node")
        if node is not None:
            refs.append({"kind": "Node", "name": node.name})
        service = self.snapshots.get("service")
        if service is not None:
            refs.append(
                {
                    "kind": "Service",
                    "namespace": service.namespace,
                    "name": service.name,
                    "pods": [p.name for p in service.pods],
                }
            )
        policies = self.snapshots.get("policies")
        if policies is not None:
            refs.append({"kind": "NetworkPolicy", "names": [p.name for p in policies]})
        return refs

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": {
                "kind": self.subject.kind,
                "namespace": self.subject.namespace,
                "name": self.subject.name,
            },
            "mode": self.mode,
            "generated_at": self.generated_at.isoformat(),
            "consistency": self.consistency,
            "healthy": self.healthy,
            "diagnoses": [d.to_dict() for d in self.diagnoses],
            "snapshots": self.snapshot_refs(),
            "error": None,
        }
