from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from kubectl_diagnose.errors import MalformedSnapshot

# ----------------------------
# Parsing utilities
# ----------------------------


def normalize_items(objs: Any) -> list[Any]:
    if not objs:
        return []
    if isinstance(objs, (list, tuple)):
        # Already a sequence of objects
        return list(objs)
    if isinstance(objs, dict) and isinstance(objs.get("items"), list):
        # List, EventList, NetworkPolicyList, ...
        # Typed lists omit the kind on each item; recover it from the list kind.
        list_kind = str(objs.get("kind") or "")
        item_kind = list_kind[: -len("List")] if list_kind.endswith("List") else ""
        if not item_kind:
            return objs["items"]
        return [
            {"kind": item_kind, **item} if isinstance(item, dict) and not item.get("kind") else item
            for item in objs["items"]
        ]
    return [objs]


def _int(value: Any, default: int | None, what: str) -> int | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MalformedSnapshot(f"{what} must be an integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedSnapshot(f"{what} must be an integer, got {value!r}")


def parse_time(ts: Any) -> datetime | None:
    if ts is None or ts == "":
        return None
    if isinstance(ts, datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _mapping(obj: Any, what: str) -> Mapping[str, Any]:
    if obj is None:
        return {}
    if not isinstance(obj, Mapping):
        raise MalformedSnapshot(f"{what} must be a mapping, got {type(obj).__name__}")
    return obj


def _sequence(obj: Any, what: str) -> list[Any]:
    if obj is None:
        return []
    if not isinstance(obj, list):
        raise MalformedSnapshot(f"{what} must be a list, got {type(obj).__name__}")
    return obj


def _labels(obj: Any, what: str) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in _mapping(obj, what).items()))


def _metadata_name(obj: Mapping[str, Any], kind: str) -> str:
    name = _mapping(obj.get("metadata"), f"{kind}.metadata").get("name")
    if not name or not isinstance(name, str):
        raise MalformedSnapshot(f"{kind} is missing metadata.name")
    return name


def selector_matches(selector: Mapping[str, str], labels: Mapping[str, str]) -> bool:
    """
    Exact key/value set inclusion: every selector pair must be present
    in the label set with an identical value.
    """
    return all(labels.get(k) == v for k, v in selector.items())


# ----------------------------
# Snapshots
# ----------------------------


class Phase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "Phase":
        for phase in cls:
            if phase.value == value:
                return phase
        return cls.UNKNOWN


@dataclass(frozen=True)
class PodCondition:
    type: str
    status: str
    reason: str | None = None
    message: str | None = None

    @classmethod
    def from_k8s(cls, obj: Any) -> "PodCondition":
        obj = _mapping(obj, "condition")
        return cls(
            type=str(obj.get("type", "")),
            status=str(obj.get("status", "Unknown")),
            reason=obj.get("reason"),
            message=obj.get("message"),
        )


@dataclass(frozen=True)
class ContainerStatus:
    name: str
    ready: bool = False
    restart_count: int = 0
    state: str | None = None  # "waiting" | "running" | "terminated"
    waiting_reason: str | None = None
    waiting_message: str | None = None
    terminated_reason: str | None = None
    exit_code: int | None = None
    last_termination_reason: str | None = None
    last_exit_code: int | None = None
    init: bool = False

    @property
    def has_state(self) -> bool:
        return self.state is not None or self.last_termination_reason is not None

    @property
    def is_waiting(self) -> bool:
        return self.state == "waiting"

    @property
    def termination_reasons(self) -> tuple[str, ...]:
        return tuple(
            r for r in (self.terminated_reason, self.last_termination_reason) if r
        )

    @classmethod
    def from_k8s(cls, obj: Any, *, init: bool = False) -> "ContainerStatus":
        obj = _mapping(obj, "containerStatus")
        name = obj.get("name") or "<unnamed>"

        state = _mapping(obj.get("state"), f"containerStatus[{name}].state")
        last = _mapping(obj.get("lastState"), f"containerStatus[{name}].lastState")

        current: str | None = None
        for key in ("waiting", "running", "terminated"):
            if state.get(key) is not None:
                current = key
                break

        waiting = _mapping(state.get("waiting"), "state.waiting")
        terminated = _mapping(state.get("terminated"), "state.terminated")
        last_terminated = _mapping(last.get("terminated"), "lastState.terminated")

        return cls(
            name=str(name),
            ready=bool(obj.get("ready", False)),
            restart_count=_int(obj.get("restartCount"), 0, f"containerStatus[{name}].restartCount"),
            state=current,
            waiting_reason=waiting.get("reason"),
            waiting_message=waiting.get("message"),
            terminated_reason=terminated.get("reason"),
            exit_code=_int(terminated.get("exitCode"), None, f"containerStatus[{name}].state.terminated.exitCode"),
            last_termination_reason=last_terminated.get("reason"),
            last_exit_code=_int(
                last_terminated.get("exitCode"), None, f"containerStatus[{name}].lastState.terminated.exitCode"
            ),
            init=init,
        )


@dataclass(frozen=True)
class PodSnapshot:
    name: str
    namespace: str = "default"
    phase: Phase = Phase.UNKNOWN
    conditions: tuple[PodCondition, ...] = ()
    container_statuses: tuple[ContainerStatus, ...] = ()
    labels: tuple[tuple[str, str], ...] = ()
    node_name: str | None = None
    reason: str | None = None
    message: str | None = None

    @property
    def label_map(self) -> dict[str, str]:
        return dict(self.labels)

    def condition(self, cond_type: str) -> PodCondition | None:
        for c in self.conditions:
            if c.type == cond_type:
                return c
        return None

    @property
    def is_scheduled(self) -> bool:
        cond = self.condition("PodScheduled")
        if cond is not None:
            return cond.status == "True"
        return bool(self.node_name)

    @property
    def is_ready(self) -> bool:
        cond = self.condition("Ready")
        if cond is not None:
            return cond.status == "True"
        statuses = self.app_containers()
        return bool(statuses) and all(cs.ready for cs in statuses)

    def app_containers(self) -> tuple[ContainerStatus, ...]:
        return tuple(cs for cs in self.container_statuses if not cs.init)

    def waiting_containers(self) -> tuple[ContainerStatus, ...]:
        return tuple(cs for cs in self.container_statuses if cs.is_waiting)

    @classmethod
    def from_k8s(cls, obj: Any) -> "PodSnapshot":
        obj = _mapping(obj, "pod")
        name = _metadata_name(obj, "pod")
        metadata = _mapping(obj.get("metadata"), "pod.metadata")
        spec = _mapping(obj.get("spec"), "pod.spec")
        status = _mapping(obj.get("status"), "pod.status")

        statuses = [
            ContainerStatus.from_k8s(cs, init=True)
            for cs in _sequence(status.get("initContainerStatuses"), "initContainerStatuses")
        ] + [
            ContainerStatus.from_k8s(cs)
            for cs in _sequence(status.get("containerStatuses"), "containerStatuses")
        ]

        return cls(
            name=name,
            namespace=metadata.get("namespace") or "default",
            phase=Phase.parse(status.get("phase")),
            conditions=tuple(
                PodCondition.from_k8s(c)
                for c in _sequence(status.get("conditions"), "pod.status.conditions")
            ),
            container_statuses=tuple(statuses),
            labels=_labels(metadata.get("labels"), "pod.metadata.labels"),
            node_name=spec.get("nodeName"),
            reason=status.get("reason"),
            message=status.get("message"),
        )


@dataclass(frozen=True)
class ObjectRef:
    kind: str
    name: str
    namespace: str | None = None


@dataclass(frozen=True)
class EventRecord:
    involved_object: ObjectRef
    reason: str = ""
    message: str = ""
    timestamp: datetime | None = None
    count: int = 1
    type: str = "Normal"

    def mentions(self, needle: str, *, case_sensitive: bool = True) -> bool:
        haystack = f"{self.reason} {self.message}"
        if case_sensitive:
            return needle in haystack
        return needle.lower() in haystack.lower()

    @classmethod
    def from_k8s(cls, obj: Any) -> "EventRecord":
        obj = _mapping(obj, "event")
        involved = _mapping(obj.get("involvedObject") or obj.get("regarding"), "event.involvedObject")
        ts = (
            obj.get("eventTime")
            or obj.get("lastTimestamp")
            or obj.get("firstTimestamp")
            or obj.get("timestamp")
        )
        return cls(
            involved_object=ObjectRef(
                kind=str(involved.get("kind", "Pod")),
                name=str(involved.get("name", "")),
                namespace=involved.get("namespace"),
            ),
            reason=obj.get("reason") or "",
            message=obj.get("message") or obj.get("note") or "",
            timestamp=parse_time(ts),
            count=_int(obj.get("count"), 1, "event.count") or 1,
            type=obj.get("type") or "Normal",
        )


def sort_events(events: Iterable[EventRecord]) -> tuple[EventRecord, ...]:
    """
    Order events by timestamp. Events without a timestamp keep their
    relative order after the timestamped ones.
    """
    indexed = list(enumerate(events))
    stamped = sorted(
        ((i, e) for i, e in indexed if e.timestamp is not None),
        key=lambda pair: (pair[1].timestamp, pair[0]),
    )
    unstamped = [(i, e) for i, e in indexed if e.timestamp is None]
    return tuple(e for _, e in stamped + unstamped)


def parse_events(events: Any) -> tuple[EventRecord, ...]:
    return sort_events(
        e if isinstance(e, EventRecord) else EventRecord.from_k8s(e)
        for e in normalize_items(events)
    )


@dataclass(frozen=True)
class NodeCondition:
    type: str
    status: str
    reason: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class NodeSnapshot:
    name: str
    conditions: tuple[NodeCondition, ...] = ()

    def condition_status(self, cond_type: str) -> str | None:
        for c in self.conditions:
            if c.type == cond_type:
                return c.status
        return None

    @classmethod
    def from_k8s(cls, obj: Any) -> "NodeSnapshot":
        obj = _mapping(obj, "node")
        status = _mapping(obj.get("status"), "node.status")
        conditions = []
        for c in _sequence(status.get("conditions"), "node.status.conditions"):
            c = _mapping(c, "node condition")
            if c.get("type") and c.get("status"):
                conditions.append(
                    NodeCondition(
                        type=c["type"],
                        status=c["status"],
                        reason=c.get("reason"),
                        message=c.get("message"),
                    )
                )
        return cls(name=_metadata_name(obj, "node"), conditions=tuple(conditions))


@dataclass(frozen=True)
class ServiceTopology:
    name: str
    namespace: str = "default"
    selector: tuple[tuple[str, str], ...] = ()
    endpoints: tuple[str, ...] = ()
    not_ready_endpoints: tuple[str, ...] = ()
    pods: tuple[PodSnapshot, ...] = ()

    @property
    def selector_map(self) -> dict[str, str]:
        return dict(self.selector)

    def matching_pods(self) -> tuple[PodSnapshot, ...]:
        if not self.selector:
            return ()
        sel = self.selector_map
        return tuple(p for p in self.pods if selector_matches(sel, p.label_map))

    @classmethod
    def from_k8s(
        cls,
        service: Any,
        endpoints: Any = None,
        pods: Iterable[PodSnapshot] = (),
    ) -> "ServiceTopology":
        service = _mapping(service, "service")
        name = _metadata_name(service, "service")
        metadata = _mapping(service.get("metadata"), "service.metadata")
        spec = _mapping(service.get("spec"), "service.spec")

        ready: list[str] = []
        not_ready: list[str] = []
        ep = _mapping(endpoints, "endpoints")
        for subset in _sequence(ep.get("subsets"), "endpoints.subsets"):
            subset = _mapping(subset, "endpoints subset")
            for addr in _sequence(subset.get("addresses"), "subset.addresses"):
                ready.append(_mapping(addr, "address").get("ip", ""))
            for addr in _sequence(subset.get("notReadyAddresses"), "subset.notReadyAddresses"):
                not_ready.append(_mapping(addr, "address").get("ip", ""))

        return cls(
            name=name,
            namespace=metadata.get("namespace") or "default",
            selector=_labels(spec.get("selector"), "service.spec.selector"),
            endpoints=tuple(ready),
            not_ready_endpoints=tuple(not_ready),
            pods=tuple(pods),
        )


LABEL_OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


@dataclass(frozen=True)
class LabelExpression:
    key: str
    operator: str
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "In":
            return self.key in labels and labels[self.key] in self.values
        if self.operator == "NotIn":
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == "Exists":
            return self.key in labels
        return self.key not in labels

    def __str__(self) -> str:
        if self.operator in ("In", "NotIn"):
            return f"{self.key} {self.operator.lower()} ({','.join(self.values)})"
        return self.key if self.operator == "Exists" else f"!{self.key}"

    @classmethod
    def from_k8s(cls, obj: Any) -> "LabelExpression":
        obj = _mapping(obj, "matchExpressions item")
        key = obj.get("key")
        operator = obj.get("operator")
        if not key or not isinstance(key, str):
            raise MalformedSnapshot("matchExpressions item is missing key")
        if operator not in LABEL_OPERATORS:
            raise MalformedSnapshot(f"matchExpressions operator {operator!r} is not one of {LABEL_OPERATORS}")
        return cls(
            key=key,
            operator=operator,
            values=tuple(str(v) for v in _sequence(obj.get("values"), "matchExpressions.values")),
        )


@dataclass(frozen=True)
class NetworkPolicy:
    name: str
    namespace: str = "default"
    pod_selector: tuple[tuple[str, str], ...] = ()
    match_expressions: tuple[LabelExpression, ...] = ()
    policy_types: tuple[str, ...] = ()

    @property
    def selects_all(self) -> bool:
        return not self.pod_selector and not self.match_expressions

    def affects(self, labels: Mapping[str, str]) -> bool:
        # An empty podSelector selects every pod in the namespace.
        return selector_matches(dict(self.pod_selector), labels) and all(
            expr.matches(labels) for expr in self.match_expressions
        )

    def describe_selector(self) -> str:
        if self.selects_all:
            return "<all pods>"
        parts = [f"{k}={v}" for k, v in self.pod_selector]
        parts.extend(str(expr) for expr in self.match_expressions)
        return ",".join(parts)

    @classmethod
    def from_k8s(cls, obj: Any) -> "NetworkPolicy":
        obj = _mapping(obj, "networkpolicy")
        metadata = _mapping(obj.get("metadata"), "networkpolicy.metadata")
        spec = _mapping(obj.get("spec"), "networkpolicy.spec")
        selector = _mapping(spec.get("podSelector"), "networkpolicy.spec.podSelector")
        return cls(
            name=_metadata_name(obj, "networkpolicy"),
            namespace=metadata.get("namespace") or "default",
            pod_selector=_labels(selector.get("matchLabels"), "podSelector.matchLabels"),
            match_expressions=tuple(
                LabelExpression.from_k8s(e)
                for e in _sequence(selector.get("matchExpressions"), "podSelector.matchExpressions")
            ),
            policy_types=tuple(_sequence(spec.get("policyTypes"), "policyTypes")),
        )


@dataclass(frozen=True)
class NetworkPolicySet:
    policies: tuple[NetworkPolicy, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.policies)

    def __len__(self) -> int:
        return len(self.policies)

    def affecting(self, labels: Mapping[str, str]) -> tuple[NetworkPolicy, ...]:
        return tuple(p for p in self.policies if p.affects(labels))

    @classmethod
    def from_k8s(cls, objs: Any) -> "NetworkPolicySet":
        return cls(
            policies=tuple(NetworkPolicy.from_k8s(o) for o in normalize_items(objs))
        )
