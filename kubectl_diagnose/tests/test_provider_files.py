import json

import pytest
import yaml

from kubectl_diagnose.errors import MalformedSnapshot, NotFound, Unavailable
from kubectl_diagnose.provider import ClusterStateProvider, FileProvider, load_manifest
from kubectl_diagnose.tests.fakes import (
    make_endpoints,
    make_event,
    make_node,
    make_pod,
    make_policy,
    make_service,
    ready_pod,
    waiting,
)


@pytest.fixture
def dump_dir(tmp_path):
    pods = {
        "apiVersion": "v1",
        "kind": "List",
        "items": [
            make_pod("web-1", labels={"app": "web"}, node="n1", containers=[waiting("app", "CrashLoopBackOff")]),
            ready_pod("web-2", {"app": "web"}),
            ready_pod("db-0", {"app": "db"}),
            ready_pod("web-1", {"app": "web"}, namespace="staging"),
        ],
    }
    events = {
        "kind": "EventList",
        "items": [
            make_event("web-1", "BackOff", "Back-off restarting failed container"),
            make_event("web-2", "Pulled", "Container image already present"),
            make_event("web-1", "Killing", "Stopping container", namespace="staging"),
        ],
    }
    (tmp_path / "pods.json").write_text(json.dumps(pods))
    (tmp_path / "events.json").write_text(json.dumps(events))
    (tmp_path / "cluster.yaml").write_text(
        yaml.safe_dump_all(
            [
                make_node("n1", Ready="True", DiskPressure="True"),
                make_service("web", {"app": "web"}),
                make_endpoints("web", ready=["10.1.0.4"]),
                make_policy("web-ingress", {"app": "web"}),
            ]
        )
    )
    (tmp_path / "notes.txt").write_text("ignored")
    return tmp_path


def test_file_provider_satisfies_protocol(dump_dir):
    assert isinstance(FileProvider([str(dump_dir)]), ClusterStateProvider)


def test_get_pod_by_namespace(dump_dir):
    provider = FileProvider([str(dump_dir)])
    assert provider.get_pod("default", "web-1").node_name == "n1"
    assert provider.get_pod("staging", "web-1").node_name is None
    with pytest.raises(NotFound):
        provider.get_pod("default", "web-9")


def test_events_filtered_on_involved_object(dump_dir):
    provider = FileProvider([str(dump_dir)])
    events = provider.get_events("default", "web-1")
    assert [e.reason for e in events] == ["BackOff"]


def test_node_service_and_policies(dump_dir):
    provider = FileProvider([str(dump_dir)])
    assert provider.get_node("n1").condition_status("DiskPressure") == "True"

    svc = provider.get_service_topology("default", "web")
    assert svc.selector_map == {"app": "web"}
    assert svc.endpoints == ("10.1.0.4",)

    assert [p.name for p in provider.list_network_policies("default")] == ["web-ingress"]
    assert len(provider.list_network_policies("staging")) == 0


def test_list_pods_with_selector(dump_dir):
    provider = FileProvider([str(dump_dir)])
    assert [p.name for p in provider.list_pods("default")] == ["web-1", "web-2", "db-0"]
    assert [p.name for p in provider.list_pods("default", {"app": "web"})] == ["web-1", "web-2"]


def test_service_without_endpoints_object(tmp_path):
    (tmp_path / "svc.json").write_text(json.dumps(make_service("lonely", {"app": "x"})))
    svc = FileProvider([str(tmp_path / "svc.json")]).get_service_topology("default", "lonely")
    assert svc.endpoints == ()


def test_missing_path_is_unavailable(tmp_path):
    provider = FileProvider([str(tmp_path / "nope.json")])
    with pytest.raises(Unavailable):
        provider.get_pod("default", "web-1")


def test_unparseable_manifest_is_malformed(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(MalformedSnapshot):
        load_manifest(str(path))


def test_manifest_with_scalar_items_is_malformed(tmp_path):
    path = tmp_path / "odd.yaml"
    path.write_text("kind: List\nitems:\n  - just-a-string\n")
    with pytest.raises(MalformedSnapshot):
        load_manifest(str(path))


def test_multi_document_yaml(tmp_path):
    path = tmp_path / "all.yml"
    path.write_text(yaml.safe_dump_all([make_pod("a"), {"kind": "List", "items": [make_pod("b")]}]))
    assert [o["metadata"]["name"] for o in load_manifest(str(path))] == ["a", "b"]


def test_typed_list_without_item_kinds(tmp_path):
    pod = make_pod("a")
    del pod["kind"]
    path = tmp_path / "pods.yaml"
    path.write_text(yaml.safe_dump({"kind": "PodList", "items": [pod]}))
    assert FileProvider([str(path)]).get_pod("default", "a").name == "a"


def test_non_numeric_restart_count_is_malformed(tmp_path):
    pod = make_pod("a", containers=[waiting("app", "CrashLoopBackOff")])
    pod["status"]["containerStatuses"][0]["restartCount"] = "lots"
    path = tmp_path / "pod.json"
    path.write_text(json.dumps(pod))
    with pytest.raises(MalformedSnapshot, match="restartCount"):
        FileProvider([str(path)]).get_pod("default", "a")
