"""
Diagnostic sessions: fetch one snapshot, classify it, attach
recommendations, assemble a report.

Each entity is read with its own provider call, back to back. The result
is a best-effort consistent view of the cluster, not an atomic one.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from typing import Any, Literal, TypeVar

from kubectl_diagnose.config import DiagnoseConfig
from kubectl_diagnose.diagnosis import DiagnosticReport, SubjectRef
from kubectl_diagnose.engine import classify
from kubectl_diagnose.errors import (
    DiagnoseError,
    NotFound,
    ProviderTimeout,
    ProviderUnavailable,
    SubjectNotFound,
    Unavailable,
)
from kubectl_diagnose.provider import ClusterStateProvider
from kubectl_diagnose.recommend import attach_recommendations

logger = logging.getLogger(__name__)

T = TypeVar("T")

Mode = Literal["pod", "network"]


@dataclass(frozen=True)
class RunOptions:
    mode: Mode = "pod"
    timeout: float | None = None  # seconds per provider call; None = config.timeout_seconds
    service: str | None = None  # pod mode: also check this Service's network path
    config: DiagnoseConfig = field(default_factory=DiagnoseConfig)

    @property
    def fetch_timeout(self) -> float:
        return self.timeout if self.timeout is not None else self.config.timeout_seconds


class Fetcher:
    """
    Runs each provider call on its own daemon thread so it can be bounded
    by a timeout. A call that times out keeps running until the provider
    returns or fails on its own; its result is discarded and it never holds
    up interpreter exit.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout

    def __call__(self, what: str, fn: Callable[..., T], *args: Any) -> T:
        future: Future = Future()

        def target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except BaseException as e:
                future.set_exception(e)

        threading.Thread(target=target, name=f"fetch {what}", daemon=True).start()
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            raise ProviderTimeout(f"Fetching {what} exceeded {self.timeout:g}s")
        except Unavailable as e:
            raise ProviderUnavailable(e.message)
        except OSError as e:
            raise ProviderUnavailable(f"Fetching {what} failed: {e}")


def _fetch_subject(fetch: Fetcher, subject: SubjectRef, fn: Callable[..., T], *args: Any) -> T:
    try:
        return fetch(f"{subject.kind} {subject.namespace}/{subject.name}", fn, *args)
    except NotFound as e:
        raise SubjectNotFound(e.message, subject=str(subject))


def _fetch_optional(fetch: Fetcher, what: str, fn: Callable[..., T], *args: Any) -> T | None:
    try:
        return fetch(what, fn, *args)
    except NotFound:
        logger.info("%s not found; continuing without it", what)
        return None


def _fetch_policies(fetch: Fetcher, provider: ClusterStateProvider, ns: str):
    policies = _fetch_optional(fetch, f"networkpolicies in {ns}", provider.list_network_policies, ns)
    if policies is None or not len(policies):
        return None
    return policies


def _diagnose_pod(
    subject: SubjectRef, options: RunOptions, provider: ClusterStateProvider, fetch: Fetcher
) -> DiagnosticReport:
    ns, name = subject.namespace, subject.name

    pod = _fetch_subject(fetch, subject, provider.get_pod, ns, name)
    events = _fetch_optional(fetch, f"events for pod {ns}/{name}", provider.get_events, ns, name) or ()

    node = None
    if pod.node_name:
        node = _fetch_optional(fetch, f"node {pod.node_name}", provider.get_node, pod.node_name)

    # Network path only when one was asked for
    service = None
    policies = None
    if options.service:
        service = _fetch_service(fetch, provider, ns, options.service, required=False)
        policies = _fetch_policies(fetch, provider, ns)

    diagnoses = classify(pod, events, node, service, policies, config=options.config)
    diagnoses = attach_recommendations(diagnoses, namespace=ns, name=name, node=pod.node_name)

    return DiagnosticReport(
        subject=subject,
        mode=options.mode,
        diagnoses=tuple(diagnoses),
        snapshots={
            "pod": pod,
            "events": events,
            "node": node,
            "service": service,
            "policies": policies,
        },
    )


def _fetch_service(fetch: Fetcher, provider: ClusterStateProvider, ns: str, name: str, *, required: bool):
    what = f"service {ns}/{name}"
    if required:
        topology = _fetch_subject(
            fetch, SubjectRef("service", ns, name), provider.get_service_topology, ns, name
        )
    else:
        topology = _fetch_optional(fetch, what, provider.get_service_topology, ns, name)
        if topology is None:
            return None
    if topology.selector:
        pods = _fetch_optional(
            fetch, f"pods selected by {what}", provider.list_pods, ns, topology.selector_map
        )
        topology = replace(topology, pods=tuple(pods or ()))
    return topology


def _diagnose_network(
    subject: SubjectRef, options: RunOptions, provider: ClusterStateProvider, fetch: Fetcher
) -> DiagnosticReport:
    ns, name = subject.namespace, subject.name

    service = _fetch_service(fetch, provider, ns, name, required=True)
    policies = _fetch_policies(fetch, provider, ns)

    diagnoses = classify(None, (), service=service, policies=policies, config=options.config)
    diagnoses = attach_recommendations(diagnoses, namespace=ns, name=name)

    return DiagnosticReport(
        subject=subject,
        mode=options.mode,
        diagnoses=tuple(diagnoses),
        snapshots={"service": service, "policies": policies},
    )


def run(subject: SubjectRef, options: RunOptions, provider: ClusterStateProvider) -> DiagnosticReport:
    """
    Drive one end-to-end diagnosis.

    Raises ProviderUnavailable, ProviderTimeout, SubjectNotFound or
    MalformedSnapshot; none of them is retried and no partial report is
    returned.
    """
    if options.mode not in ("pod", "network"):
        raise ValueError(f"Unknown mode '{options.mode}'")

    fetch = Fetcher(options.fetch_timeout)
    logger.debug("Diagnosing %s in %s mode", subject, options.mode)
    if options.mode == "network":
        return _diagnose_network(subject, options, provider, fetch)
    return _diagnose_pod(subject, options, provider, fetch)


# ----------------------------
# Namespace sweep
# ----------------------------


@dataclass
class SweepResult:
    reports: dict[str, DiagnosticReport] = field(default_factory=dict)
    errors: dict[str, DiagnoseError] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return bool(self.skipped)


def sweep(
    namespace: str,
    options: RunOptions,
    provider: ClusterStateProvider,
    *,
    cancel: threading.Event | None = None,
    workers: int | None = None,
) -> SweepResult:
    """
    Diagnose every Pod in a namespace concurrently. Each session owns its
    snapshot and report. Once `cancel` is set no new session starts;
    sessions already fetching finish or time out normally.
    """
    cancel = cancel or threading.Event()
    workers = workers or options.config.sweep_workers
    pod_options = replace(options, mode="pod")

    try:
        pods = Fetcher(options.fetch_timeout)(f"pods in {namespace}", provider.list_pods, namespace)
    except NotFound as e:
        raise SubjectNotFound(e.message, subject=f"namespace/{namespace}")

    result = SweepResult()
    lock = threading.Lock()

    def session(subject: SubjectRef) -> None:
        if cancel.is_set():
            with lock:
                result.skipped.append(subject.name)
            return
        try:
            report = run(subject, pod_options, provider)
        except DiagnoseError as e:
            logger.warning("Diagnosis of %s failed: %s: %s", subject, e.kind, e.message)
            with lock:
                result.errors[subject.name] = e
            return
        with lock:
            result.reports[subject.name] = report

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="session") as sessions:
        futures = [
            sessions.submit(session, SubjectRef("pod", namespace, p.name))
            for p in sorted(pods, key=lambda p: p.name)
        ]
        for f in futures:
            f.result()

    result.skipped.sort()
    logger.info(
        "Swept %s: %d diagnosed, %d failed, %d skipped",
        namespace,
        len(result.reports),
        len(result.errors),
        len(result.skipped),
    )
    return result
