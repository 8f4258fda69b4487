from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.rules.base_rule import DiagnosticRule


def _selector_text(service) -> str:
    return ",".join(f"{k}={v}" for k, v in service.selector) or "<none>"


def _service_evidence(service) -> list[Evidence]:
    return [
        Evidence(
            source=f"service[{service.name}].spec.selector",
            detail=f"Service {service.name} selects {_selector_text(service)}",
        ),
        Evidence(
            source=f"endpoints[{service.name}]",
            detail=(
                f"{len(service.endpoints)} ready endpoint(s), "
                f"{len(service.not_ready_endpoints)} not ready"
            ),
        ),
    ]


class ServiceEndpointsEmptyRule(DiagnosticRule):
    """
    Service has a selector and Ready Pods that match it, yet no endpoint
    is bound. Either the selector/port wiring is wrong or the endpoint
    controller disagrees with the Pods' readiness.
    """

    name = "ServiceEndpointsEmpty"
    category = "Networking"
    severity = "critical"
    priority = 60
    requires = ["service"]

    def matches(self, ctx) -> bool:
        svc = ctx.service
        if not svc.selector or svc.endpoints:
            return False
        pods = svc.matching_pods()
        return bool(pods) and all(p.is_ready for p in pods)

    def diagnose(self, ctx):
        svc = ctx.service
        evidence = _service_evidence(svc) + [
            Evidence(source=f"pod[{p.name}].status.conditions[Ready]", detail=f"Pod {p.name} Ready=True")
            for p in svc.matching_pods()
        ]
        return [
            self.make(
                DiagnosisKind.SELECTOR_MISMATCH_OR_PROBE_FAILURE,
                f"Service {svc.name} has no endpoints although matching Pods are Ready",
                evidence,
            )
        ]


class ServiceSelectsNothingRule(DiagnosticRule):
    name = "ServiceSelectsNothing"
    category = "Networking"
    severity = "critical"
    priority = 61
    requires = ["service"]

    def matches(self, ctx) -> bool:
        return bool(ctx.service.selector) and not ctx.service.matching_pods()

    def diagnose(self, ctx):
        svc = ctx.service
        return [
            self.make(
                DiagnosisKind.SELECTOR_MATCHES_NO_PODS,
                f"Service {svc.name} selector matches no Pods in namespace {svc.namespace}",
                _service_evidence(svc),
            )
        ]


class ServiceBackendsNotReadyRule(DiagnosticRule):
    name = "ServiceBackendsNotReady"
    category = "Networking"
    severity = "critical"
    priority = 62
    requires = ["service"]

    def _not_ready(self, ctx):
        return [p for p in ctx.service.matching_pods() if not p.is_ready]

    def matches(self, ctx) -> bool:
        return not ctx.service.endpoints and bool(self._not_ready(ctx))

    def diagnose(self, ctx):
        svc = ctx.service
        evidence = _service_evidence(svc) + [
            Evidence(
                source=f"pod[{p.name}].status.conditions[Ready]",
                detail=f"Pod {p.name} phase={p.phase.value} is not Ready",
            )
            for p in self._not_ready(ctx)
        ]
        return [
            self.make(
                DiagnosisKind.BACKENDS_NOT_READY,
                f"Service {svc.name} has no endpoints because its Pods are not Ready",
                evidence,
            )
        ]


class NetworkPolicySelectsPodRule(DiagnosticRule):
    """
    A NetworkPolicy's podSelector matches the subject's labels exactly
    (key/value set inclusion). Once any policy selects a Pod, traffic not
    explicitly allowed is denied, so this is reported for review rather
    than as a fault.
    """

    name = "NetworkPolicySelectsPod"
    category = "Networking"
    severity = "info"
    priority = 70
    requires = ["policies"]

    def _label_sets(self, ctx) -> list[tuple[str, dict[str, str]]]:
        if ctx.pod is not None:
            return [(f"pod {ctx.pod.name}", ctx.pod.label_map)]
        if ctx.service is not None:
            pods = ctx.service.matching_pods()
            if pods:
                return [(f"pod {p.name}", p.label_map) for p in pods]
            if ctx.service.selector:
                return [(f"service {ctx.service.name} selector", ctx.service.selector_map)]
        return []

    def _hits(self, ctx):
        hits = []
        for subject, labels in self._label_sets(ctx):
            for policy in ctx.policies.affecting(labels):
                hits.append((subject, policy))
        return hits

    def matches(self, ctx) -> bool:
        return bool(self._hits(ctx))

    def diagnose(self, ctx):
        evidence = []
        for subject, policy in self._hits(ctx):
            selector = policy.describe_selector()
            types = "/".join(policy.policy_types) or "Ingress"
            evidence.append(
                Evidence(
                    source=f"networkpolicy[{policy.name}].spec.podSelector",
                    detail=f"NetworkPolicy {policy.name} ({types}) selects {subject} via {selector}",
                )
            )
        return [
            self.make(
                DiagnosisKind.POLICY_MAY_BLOCK_TRAFFIC,
                "NetworkPolicy applies to this workload; traffic not explicitly allowed is denied",
                evidence,
            )
        ]
