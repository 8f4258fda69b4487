import pytest

from kubectl_diagnose.config import DiagnoseConfig
from kubectl_diagnose.diagnosis import DiagnosisKind, Evidence
from kubectl_diagnose.engine import classify, describe_rules, get_default_rules
from kubectl_diagnose.model import Phase, PodSnapshot
from kubectl_diagnose.rules.base_rule import DiagnosticRule
from kubectl_diagnose.tests.fakes import make_event, make_pod, waiting

# ----------------------------
# Test rules
# ----------------------------


class AlwaysRule(DiagnosticRule):
    name = "Always"
    category = "Test"
    priority = 500
    requires = []

    def matches(self, ctx):
        return True

    def diagnose(self, ctx):
        return [
            self.make(
                DiagnosisKind.INSUFFICIENT_DATA,
                "always",
                [Evidence(source="test", detail="always")],
            )
        ]


class EarlyRule(AlwaysRule):
    name = "Early"
    priority = 1

    def diagnose(self, ctx):
        return [self.make(DiagnosisKind.CRASH_LOOP, "early", [])]


class BrokenRule(AlwaysRule):
    name = "Broken"
    priority = 5

    def matches(self, ctx):
        return ctx.pod.container_statuses[3].ready


class BadReturnRule(AlwaysRule):
    name = "BadReturn"

    def diagnose(self, ctx):
        return {"kind": "CrashLoop"}


class EmptyReturnRule(AlwaysRule):
    name = "EmptyReturn"

    def diagnose(self, ctx):
        return []


class RepeatingRule(AlwaysRule):
    name = "Repeating"

    def diagnose(self, ctx):
        return [self.make(DiagnosisKind.CRASH_LOOP, "same", [])] * 2


def pod_snapshot(**kw):
    return PodSnapshot.from_k8s(make_pod("p", **kw))


# ----------------------------
# Invariants
# ----------------------------


def test_classify_is_idempotent():
    pod = pod_snapshot(containers=[waiting("app", "CrashLoopBackOff", last="OOMKilled")])
    events = [make_event("p", "BackOff", "Back-off restarting failed container", count=3)]
    assert classify(pod, events) == classify(pod, events)


def test_output_ordered_by_rank_then_table_order():
    rules = [AlwaysRule(), EarlyRule()]
    result = classify(pod_snapshot(), rules=rules)
    assert [d.rule for d in result] == ["Early", "Always"]
    assert [d.rank for d in result] == sorted(d.rank for d in result)


def test_default_rule_ranks_are_unique_and_sorted():
    ranks = [r.priority for r in get_default_rules()]
    assert ranks == sorted(ranks)
    assert len(ranks) == len(set(ranks))


def test_rule_failing_on_partial_data_degrades():
    result = classify(pod_snapshot(), rules=[BrokenRule(), AlwaysRule()])
    assert result[0].kind == DiagnosisKind.INSUFFICIENT_DATA
    assert result[0].rule == "Broken"
    assert "IndexError" in result[0].evidence[0].detail
    assert result[1].rule == "Always"


def test_classify_never_raises_on_sparse_pod():
    sparse = PodSnapshot(name="p", phase=Phase.RUNNING)
    assert classify(sparse, ()) == []


def test_diagnose_must_return_a_list():
    with pytest.raises(TypeError):
        classify(pod_snapshot(), rules=[BadReturnRule()])


def test_diagnose_must_return_something_after_match():
    with pytest.raises(ValueError):
        classify(pod_snapshot(), rules=[EmptyReturnRule()])


def test_duplicate_diagnoses_are_collapsed():
    result = classify(pod_snapshot(), rules=[RepeatingRule()])
    assert len(result) == 1


def test_category_filters():
    rules = [AlwaysRule(), EarlyRule()]
    enabled = DiagnoseConfig(enabled_categories=("Other",))
    assert classify(pod_snapshot(), rules=rules, config=enabled) == []

    disabled = DiagnoseConfig(disabled_categories=("Test",))
    assert classify(pod_snapshot(), rules=rules, config=disabled) == []


def test_rules_missing_inputs_are_skipped():
    # NodePressure requires a node snapshot
    pod = pod_snapshot(node="n1")
    assert all(d.rule != "NodePressure" for d in classify(pod))


def test_describe_rules_lists_table_in_rank_order():
    table = describe_rules()
    assert [r["rank"] for r in table] == sorted(r["rank"] for r in table)
    by_name = {r["name"]: r for r in table}
    assert by_name["CrashLoopOOM"]["rank"] < by_name["CrashLoopBackOff"]["rank"]
    assert by_name["NodePressure"]["requires"] == ["pod", "node"]
    assert by_name["InsufficientResources"]["description"].startswith("Detects Pods")
