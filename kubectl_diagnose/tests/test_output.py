import json

import yaml

from kubectl_diagnose.diagnosis import Diagnosis, DiagnosisKind, DiagnosticReport, Evidence, SubjectRef
from kubectl_diagnose.errors import ProviderTimeout
from kubectl_diagnose.model import NetworkPolicy, NetworkPolicySet, ServiceTopology
from kubectl_diagnose.output import render, render_error, render_rules
from kubectl_diagnose.recommend import attach_recommendations

SUBJECT = SubjectRef("pod", "shop", "web-1")


def report(*diagnoses):
    return DiagnosticReport(subject=SUBJECT, mode="pod", diagnoses=tuple(diagnoses))


def oom():
    d = Diagnosis(
        kind=DiagnosisKind.OOM_KILLED,
        rank=20,
        rule="CrashLoopOOM",
        summary="Container is crash-looping because it exceeds its memory limit",
        category="Container",
        severity="critical",
        evidence=(Evidence(source="pod.status.containerStatuses[app].lastState", detail="reason=OOMKilled"),),
    )
    return attach_recommendations([d], namespace="shop", name="web-1")[0]


def test_json_report_has_diagnoses_and_null_error():
    doc = json.loads(render(report(oom()), "json"))
    assert doc["error"] is None
    assert doc["healthy"] is False
    (d,) = doc["diagnoses"]
    assert d["kind"] == "OOMKilled"
    assert d["rank"] == 20
    assert d["evidence"] == [
        {"source": "pod.status.containerStatuses[app].lastState", "detail": "reason=OOMKilled"}
    ]
    assert d["recommendation"]["kind"] == "OOMKilled"


def test_yaml_report_round_trips_through_safe_load():
    doc = yaml.safe_load(render(report(oom()), "yaml"))
    assert doc["subject"]["name"] == "web-1"
    assert doc["diagnoses"][0]["severity"] == "critical"


def test_text_report():
    out = render(report(oom()), "text")
    lines = out.splitlines()
    assert lines[0] == "Pod: shop/web-1"
    assert "1. OOMKilled [critical, rank 20]" in out
    assert "     - reason=OOMKilled (pod.status.containerStatuses[app].lastState)" in lines
    assert "Recommendation: Give the container enough memory" in out


def test_text_report_without_diagnoses():
    assert render(report(), "text").endswith("No issues found.")


def test_error_documents():
    err = ProviderTimeout("Fetching pod shop/web-1 exceeded 5s")

    doc = json.loads(render_error(SUBJECT, err, "json"))
    assert doc == {
        "subject": {"kind": "pod", "namespace": "shop", "name": "web-1"},
        "diagnoses": [],
        "error": {"kind": "ProviderTimeout", "message": "Fetching pod shop/web-1 exceeded 5s"},
    }

    assert yaml.safe_load(render_error(None, err, "yaml"))["subject"] is None
    assert render_error(SUBJECT, err) == "ProviderTimeout: Fetching pod shop/web-1 exceeded 5s"


def test_rules_table_text():
    rows = [
        {"rank": 10, "name": "InsufficientResources", "category": "Scheduling", "phases": ["Pending"]},
        {"rank": 70, "name": "NetworkPolicySelectsPod", "category": "Networking", "phases": []},
    ]
    out = render_rules(rows).splitlines()
    assert out[0].split() == ["RANK", "RULE", "CATEGORY", "PHASES"]
    assert out[1].split() == ["10", "InsufficientResources", "Scheduling", "Pending"]
    assert out[2].split()[-1] == "*"


def test_network_report_snapshot_sources():
    service = ServiceTopology(name="cart", namespace="shop", selector=(("app", "cart"),))
    policies = NetworkPolicySet((NetworkPolicy(name="deny-all", namespace="shop"),))
    rep = DiagnosticReport(
        subject=SubjectRef("service", "shop", "cart"),
        mode="network",
        diagnoses=(),
        snapshots={"service": service, "policies": policies},
    )
    assert json.loads(render(rep, "json"))["snapshots"] == [
        {"kind": "Service", "namespace": "shop", "name": "cart", "pods": []},
        {"kind": "NetworkPolicy", "names": ["deny-all"]},
    ]
