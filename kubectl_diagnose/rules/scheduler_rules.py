from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.rules.base_rule import DiagnosticRule, event_evidence

AFFINITY_MARKERS = (
    "Unschedulable",
    "node affinity",
    "node selector",
    "untolerated taint",
    "didn't tolerate",
)

VOLUME_MARKERS = (
    "PersistentVolumeClaim",
    "persistentvolumeclaim",
    "PVC",
)


class InsufficientResourcesRule(DiagnosticRule):
    """
    Detects Pods the scheduler cannot place because no node has enough
    allocatable CPU, memory or ephemeral storage.

    Signals:
    - Pod phase == Pending
    - An event whose reason or message contains "Insufficient"
    """

    name = "InsufficientResources"
    category = "Scheduling"
    priority = 10
    phases = ["Pending"]
    requires = ["pod", "events"]

    def _events(self, ctx):
        return ctx.timeline.mentioning("Insufficient")

    def matches(self, ctx) -> bool:
        return bool(self._events(ctx))

    def diagnose(self, ctx):
        return [
            self.make(
                DiagnosisKind.RESOURCE_CONSTRAINT,
                "No node has enough allocatable resources for the Pod's requests",
                [event_evidence(e) for e in self._events(ctx)],
            )
        ]


class NodeAffinityUnsatisfiableRule(DiagnosticRule):
    """
    Detects Pods rejected by every node because of affinity, node
    selector or taint constraints.
    """

    name = "NodeAffinityUnsatisfiable"
    category = "Scheduling"
    priority = 11
    phases = ["Pending"]
    requires = ["pod", "events"]

    def _events(self, ctx):
        return ctx.timeline.mentioning(*AFFINITY_MARKERS)

    def matches(self, ctx) -> bool:
        return bool(self._events(ctx))

    def diagnose(self, ctx):
        return [
            self.make(
                DiagnosisKind.NODE_AFFINITY_CONSTRAINT,
                "Pod placement constraints exclude every schedulable node",
                [event_evidence(e) for e in self._events(ctx)],
            )
        ]


class VolumeUnboundRule(DiagnosticRule):
    """
    Detects Pods waiting on a PersistentVolumeClaim that is not Bound.
    """

    name = "VolumeUnbound"
    category = "Storage"
    priority = 12
    phases = ["Pending"]
    requires = ["pod", "events"]

    def _events(self, ctx):
        return ctx.timeline.mentioning(*VOLUME_MARKERS)

    def matches(self, ctx) -> bool:
        return bool(self._events(ctx))

    def diagnose(self, ctx):
        return [
            self.make(
                DiagnosisKind.VOLUME_UNBOUND,
                "Pod references a PersistentVolumeClaim that is not bound",
                [event_evidence(e) for e in self._events(ctx)],
            )
        ]


class SchedulerSilentRule(DiagnosticRule):
    """
    Pending, not yet placed on a node, and the scheduler has said nothing
    about it recently. Either the scheduler is down or its events are not
    reaching the API server.
    """

    name = "SchedulerSilent"
    category = "Scheduling"
    priority = 13
    phases = ["Pending"]
    requires = ["pod"]

    def matches(self, ctx) -> bool:
        if ctx.pod.is_scheduled:
            return False
        recent = ctx.timeline.events_within_window(
            ctx.config.scheduling_staleness_minutes, reason="FailedScheduling"
        )
        return not recent

    def diagnose(self, ctx):
        window = ctx.config.scheduling_staleness_minutes
        evidence = [
            Evidence(
                source="pod.status.phase",
                detail=f"Pod {ctx.pod.name} is Pending and not assigned to a node",
            ),
            Evidence(
                source="events",
                detail=f"No FailedScheduling event within the last {window:g} minutes",
            ),
        ]
        stale = ctx.timeline.with_reason("FailedScheduling")
        if stale:
            evidence.append(event_evidence(stale[-1]))
        return [
            self.make(
                DiagnosisKind.CONTROL_PLANE_HEALTH_UNKNOWN,
                "Scheduler has not reported on this Pod; control plane health is unknown",
                evidence,
            )
        ]
