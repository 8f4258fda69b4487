"""Cluster State Providers: read-only sources of point-in-time snapshots."""

import glob
import json
import logging
import os
import threading
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import urllib3
import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from kubectl_diagnose.errors import MalformedSnapshot, NotFound, Unavailable
from kubectl_diagnose.model import (
    EventRecord,
    NetworkPolicySet,
    NodeSnapshot,
    PodSnapshot,
    ServiceTopology,
    normalize_items,
    parse_events,
    selector_matches,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ClusterStateProvider(Protocol):
    def get_pod(self, namespace: str, name: str) -> PodSnapshot: ...

    def get_events(self, namespace: str, involved_object_name: str) -> tuple[EventRecord, ...]: ...

    def get_node(self, name: str) -> NodeSnapshot: ...

    def get_service_topology(self, namespace: str, name: str) -> ServiceTopology: ...

    def list_network_policies(self, namespace: str) -> NetworkPolicySet: ...

    def list_pods(
        self, namespace: str, selector: Mapping[str, str] | None = None
    ) -> tuple[PodSnapshot, ...]: ...


def label_selector(selector: Mapping[str, str] | None) -> str | None:
    if not selector:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))


# ----------------------------
# Live cluster
# ----------------------------


class KubernetesProvider:
    """
    Reads from the Kubernetes API with the official client. Config is
    loaded once: in-cluster first, then kubeconfig (optionally a named
    context). `request_timeout` bounds every API request on the wire.
    """

    def __init__(
        self,
        *,
        context: str | None = None,
        kubeconfig: str | None = None,
        request_timeout: float | None = None,
    ):
        self.context = context
        self.kubeconfig = kubeconfig
        self.request_timeout = request_timeout
        self._api_client: client.ApiClient | None = None
        self._init_lock = threading.Lock()

    def _client(self) -> client.ApiClient:
        if self._api_client is not None:
            return self._api_client

        with self._init_lock:
            if self._api_client is not None:
                return self._api_client
            try:
                if self.context or self.kubeconfig:
                    config.load_kube_config(config_file=self.kubeconfig, context=self.context)
                else:
                    try:
                        config.load_incluster_config()
                    except config.ConfigException:
                        config.load_kube_config()
            except (config.ConfigException, OSError) as e:
                raise Unavailable(f"Cannot load Kubernetes configuration: {e}")
            self._api_client = client.ApiClient()
            return self._api_client

    def _core(self) -> client.CoreV1Api:
        return client.CoreV1Api(self._client())

    def _networking(self) -> client.NetworkingV1Api:
        return client.NetworkingV1Api(self._client())

    def _call(self, what: str, fn, *args, **kwargs) -> Any:
        """
        Run one API call and return the response as plain JSON-shaped data.
        """
        if self.request_timeout is not None:
            kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            obj = fn(*args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise NotFound(f"{what} not found")
            raise Unavailable(f"Kubernetes API error reading {what}: {e.status} {e.reason}")
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise Unavailable(f"Cannot reach Kubernetes API reading {what}: {e}")
        return self._client().sanitize_for_serialization(obj)

    def get_pod(self, namespace: str, name: str) -> PodSnapshot:
        raw = self._call(f"pod {namespace}/{name}", self._core().read_namespaced_pod, name, namespace)
        return PodSnapshot.from_k8s(raw)

    def get_events(self, namespace: str, involved_object_name: str) -> tuple[EventRecord, ...]:
        raw = self._call(
            f"events for {namespace}/{involved_object_name}",
            self._core().list_namespaced_event,
            namespace,
            field_selector=f"involvedObject.name={involved_object_name}",
        )
        return parse_events(raw)

    def get_node(self, name: str) -> NodeSnapshot:
        return NodeSnapshot.from_k8s(self._call(f"node {name}", self._core().read_node, name))

    def get_service_topology(self, namespace: str, name: str) -> ServiceTopology:
        service = self._call(
            f"service {namespace}/{name}", self._core().read_namespaced_service, name, namespace
        )
        try:
            endpoints = self._call(
                f"endpoints {namespace}/{name}",
                self._core().read_namespaced_endpoints,
                name,
                namespace,
            )
        except NotFound:
            endpoints = None
        return ServiceTopology.from_k8s(service, endpoints)

    def list_network_policies(self, namespace: str) -> NetworkPolicySet:
        raw = self._call(
            f"networkpolicies in {namespace}",
            self._networking().list_namespaced_network_policy,
            namespace,
        )
        return NetworkPolicySet.from_k8s(raw)

    def list_pods(
        self, namespace: str, selector: Mapping[str, str] | None = None
    ) -> tuple[PodSnapshot, ...]:
        kwargs = {}
        if selector:
            kwargs["label_selector"] = label_selector(selector)
        raw = self._call(f"pods in {namespace}", self._core().list_namespaced_pod, namespace, **kwargs)
        return tuple(PodSnapshot.from_k8s(p) for p in normalize_items(raw))


# ----------------------------
# Dumped manifests
# ----------------------------

MANIFEST_EXTENSIONS = (".json", ".yaml", ".yml")


def load_manifest(path: str) -> list[dict[str, Any]]:
    """
    Read every Kubernetes object from a JSON or YAML file, flattening
    List documents and multi-document YAML streams.
    """
    try:
        with open(path, encoding="utf-8") as f:
            if path.endswith(".json"):
                docs = [json.load(f)]
            else:
                docs = list(yaml.safe_load_all(f))
    except OSError as e:
        raise Unavailable(f"Cannot read manifest {path}: {e}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise MalformedSnapshot(f"Cannot parse manifest {path}: {e}")

    objects: list[dict[str, Any]] = []
    for doc in docs:
        for obj in normalize_items(doc):
            if not isinstance(obj, dict):
                raise MalformedSnapshot(f"{path} contains a non-object item")
            objects.append(obj)
    return objects


def _namespace_of(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("namespace") or "default"


def _name_of(obj: dict[str, Any]) -> str | None:
    return (obj.get("metadata") or {}).get("name")


class FileProvider:
    """
    Serves snapshots from manifests dumped with `kubectl get -o json|yaml`.
    Paths may be files or directories; everything is read on first use.
    """

    def __init__(self, paths: list[str]):
        self.paths = list(paths)
        self._objects: dict[str, list[dict[str, Any]]] | None = None
        self._lock = threading.Lock()

    def _index(self) -> dict[str, list[dict[str, Any]]]:
        if self._objects is not None:
            return self._objects

        with self._lock:
            if self._objects is not None:
                return self._objects

            files: list[str] = []
            for path in self.paths:
                if os.path.isdir(path):
                    for ext in MANIFEST_EXTENSIONS:
                        files.extend(glob.glob(os.path.join(path, f"*{ext}")))
                elif os.path.exists(path):
                    files.append(path)
                else:
                    raise Unavailable(f"Manifest path {path} does not exist")

            index: dict[str, list[dict[str, Any]]] = {}
            for file in sorted(files):
                for obj in load_manifest(file):
                    kind = obj.get("kind")
                    if not kind:
                        logger.warning("Skipping object without kind in %s", file)
                        continue
                    index.setdefault(kind, []).append(obj)
            logger.debug(
                "Indexed %s from %d file(s)",
                {k: len(v) for k, v in index.items()},
                len(files),
            )
            self._objects = index
            return index

    def _find(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        for obj in self._index().get(kind, []):
            if _name_of(obj) != name:
                continue
            if namespace is not None and _namespace_of(obj) != namespace:
                continue
            return obj
        where = f"{namespace}/{name}" if namespace else name
        raise NotFound(f"{kind} {where} not found")

    def get_pod(self, namespace: str, name: str) -> PodSnapshot:
        return PodSnapshot.from_k8s(self._find("Pod", name, namespace))

    def get_events(self, namespace: str, involved_object_name: str) -> tuple[EventRecord, ...]:
        matching = []
        for obj in self._index().get("Event", []):
            involved = obj.get("involvedObject") or obj.get("regarding") or {}
            ns = involved.get("namespace") or _namespace_of(obj)
            if involved.get("name") == involved_object_name and ns == namespace:
                matching.append(obj)
        return parse_events(matching)

    def get_node(self, name: str) -> NodeSnapshot:
        return NodeSnapshot.from_k8s(self._find("Node", name))

    def get_service_topology(self, namespace: str, name: str) -> ServiceTopology:
        service = self._find("Service", name, namespace)
        try:
            endpoints = self._find("Endpoints", name, namespace)
        except NotFound:
            endpoints = None
        return ServiceTopology.from_k8s(service, endpoints)

    def list_network_policies(self, namespace: str) -> NetworkPolicySet:
        return NetworkPolicySet.from_k8s(
            [p for p in self._index().get("NetworkPolicy", []) if _namespace_of(p) == namespace]
        )

    def list_pods(
        self, namespace: str, selector: Mapping[str, str] | None = None
    ) -> tuple[PodSnapshot, ...]:
        pods = []
        for obj in self._index().get("Pod", []):
            if _namespace_of(obj) != namespace:
                continue
            labels = (obj.get("metadata") or {}).get("labels") or {}
            if selector and not selector_matches(selector, labels):
                continue
            pods.append(PodSnapshot.from_k8s(obj))
        return tuple(pods)
