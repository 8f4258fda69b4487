from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.rules.base_rule import (
    DiagnosticRule,
    container_source,
    event_evidence,
)
from kubectl_diagnose.rules.container_rules import describe_exit_code


def _oom_terminated(pod):
    return [cs for cs in pod.container_statuses if "OOMKilled" in cs.termination_reasons]


class ReadinessGateRule(DiagnosticRule):
    """
    Detects Pods that are Running with every container started but at
    least one container not Ready. Traffic is not routed to such Pods.

    Signals:
    - Pod phase == Running
    - No container is in a waiting state
    - At least one container has ready == False
    """

    name = "ReadinessGate"
    category = "Container"
    priority = 30
    phases = ["Running"]

    def _not_ready(self, ctx):
        return [
            cs for cs in ctx.pod.app_containers() if cs.has_state and not cs.ready
        ]

    def matches(self, ctx) -> bool:
        if ctx.pod.waiting_containers():
            return False
        return bool(self._not_ready(ctx))

    def diagnose(self, ctx):
        evidence = [
            Evidence(
                source=container_source(cs.name, "ready"),
                detail=f"Container '{cs.name}' is running but ready=false",
            )
            for cs in self._not_ready(ctx)
        ]
        ready_cond = ctx.pod.condition("Ready")
        if ready_cond is not None and ready_cond.status != "True":
            detail = f"Ready={ready_cond.status}"
            if ready_cond.reason:
                detail = f"{detail}, reason={ready_cond.reason}"
            evidence.append(Evidence(source="pod.status.conditions[Ready]", detail=detail))
        evidence.extend(event_evidence(e) for e in ctx.timeline.matching(r"readiness probe"))
        return [
            self.make(
                DiagnosisKind.READINESS_FAILURE,
                "Pod is running but failing its readiness gate",
                evidence,
            )
        ]


class FailedOOMKilledRule(DiagnosticRule):
    name = "FailedOOMKilled"
    category = "Container"
    severity = "critical"
    priority = 40
    phases = ["Failed"]

    def matches(self, ctx) -> bool:
        return bool(_oom_terminated(ctx.pod))

    def diagnose(self, ctx):
        evidence = [
            Evidence(
                source=container_source(cs.name, "terminated.reason"),
                detail=(
                    f"Container '{cs.name}' terminated: reason=OOMKilled, "
                    f"{describe_exit_code(cs.exit_code if cs.exit_code is not None else cs.last_exit_code)}"
                ),
            )
            for cs in _oom_terminated(ctx.pod)
        ]
        return [
            self.make(
                DiagnosisKind.OOM_KILLED,
                "Container was terminated due to out-of-memory",
                evidence,
            )
        ]


class FailedApplicationCrashRule(DiagnosticRule):
    name = "FailedApplicationCrash"
    category = "Container"
    severity = "critical"
    priority = 41
    phases = ["Failed"]

    def matches(self, ctx) -> bool:
        return not _oom_terminated(ctx.pod)

    def diagnose(self, ctx):
        evidence = []
        if ctx.pod.reason or ctx.pod.message:
            detail = f"reason={ctx.pod.reason or 'unknown'}"
            if ctx.pod.message:
                detail = f"{detail}, message={ctx.pod.message}"
            evidence.append(Evidence(source="pod.status.reason", detail=detail))
        for cs in ctx.pod.container_statuses:
            if cs.terminated_reason or cs.exit_code is not None:
                evidence.append(
                    Evidence(
                        source=container_source(cs.name, "state.terminated"),
                        detail=(
                            f"Container '{cs.name}' terminated: "
                            f"reason={cs.terminated_reason or 'unknown'}, "
                            f"{describe_exit_code(cs.exit_code)}"
                        ),
                    )
                )
        return [
            self.make(
                DiagnosisKind.APPLICATION_CRASH,
                "Pod failed because its containers exited with an error",
                evidence,
            )
        ]


class UnknownPhaseRule(DiagnosticRule):
    """
    Phase Unknown means the kubelet stopped reporting the Pod's state,
    almost always because the node is unreachable.
    """

    name = "UnknownPhase"
    category = "Node"
    severity = "critical"
    priority = 50
    phases = ["Unknown"]

    def matches(self, ctx) -> bool:
        return True

    def diagnose(self, ctx):
        evidence = [
            Evidence(source="pod.status.phase", detail=f"Pod {ctx.pod.name} phase=Unknown")
        ]
        if ctx.pod.reason:
            evidence.append(Evidence(source="pod.status.reason", detail=ctx.pod.reason))
        if ctx.node is not None:
            ready = ctx.node.condition_status("Ready")
            evidence.append(
                Evidence(
                    source=f"node[{ctx.node.name}].conditions[Ready]",
                    detail=f"Node {ctx.node.name} Ready={ready or 'missing'}",
                )
            )
        elif ctx.pod.node_name:
            evidence.append(
                Evidence(source="pod.spec.nodeName", detail=f"Scheduled on node {ctx.pod.node_name}")
            )
        evidence.extend(event_evidence(e) for e in ctx.timeline.mentioning("NodeNotReady", "NodeLost"))
        return [
            self.make(
                DiagnosisKind.NODE_COMMUNICATION_FAILURE,
                "Kubelet on the Pod's node stopped reporting status",
                evidence,
            )
        ]
