import textwrap

import pytest

import kubectl_diagnose.engine as engine
from kubectl_diagnose.loader import load_plugins, load_rules, validate_rule
from kubectl_diagnose.rules.base_rule import DiagnosticRule


class BadPriorityRule(DiagnosticRule):
    name = "BadPriority"
    priority = -1


class BadRequiresRule(DiagnosticRule):
    name = "BadRequires"
    requires = ["pod", "pvc"]


class BadSeverityRule(DiagnosticRule):
    name = "BadSeverity"
    severity = "fatal"


def test_priority_range_enforced():
    with pytest.raises(ValueError):
        validate_rule(BadPriorityRule())


def test_requires_keys_enforced():
    with pytest.raises(ValueError, match="pvc"):
        validate_rule(BadRequiresRule())


def test_severity_enforced():
    with pytest.raises(ValueError):
        validate_rule(BadSeverityRule())


def test_all_rules_have_metadata():
    rules = load_rules()
    assert rules
    for r in rules:
        assert r.name
        assert r.category
        assert 0 <= r.priority <= 1000
        assert r.severity in ("info", "warning", "critical")


def test_rules_have_matches_and_diagnose():
    for r in load_rules():
        assert type(r).matches is not DiagnosticRule.matches
        assert type(r).diagnose is not DiagnosticRule.diagnose


def test_builtin_rule_table():
    names = [r.name for r in load_rules()]
    assert names == [
        "InsufficientResources",
        "NodeAffinityUnsatisfiable",
        "VolumeUnbound",
        "SchedulerSilent",
        "CrashLoopOOM",
        "CrashLoopBackOff",
        "ImagePullFailure",
        "ContainerConfigError",
        "ReadinessGate",
        "FailedOOMKilled",
        "FailedApplicationCrash",
        "UnknownPhase",
        "NodePressure",
        "ServiceEndpointsEmpty",
        "ServiceSelectsNothing",
        "ServiceBackendsNotReady",
        "NetworkPolicySelectsPod",
        "IncompleteContainerStatus",
    ]


# ----------------------------
# Plugins
# ----------------------------

PLUGIN = textwrap.dedent(
    """
    from kubectl_diagnose.diagnosis import DiagnosisKind
    from kubectl_diagnose.rules.base_rule import DiagnosticRule


    class SidecarMissingRule(DiagnosticRule):
        name = "SidecarMissing"
        category = "Mesh"
        priority = 80
        phases = ["Running"]

        def matches(self, ctx):
            return len(ctx.pod.container_statuses) == 1

        def diagnose(self, ctx):
            return [self.make(DiagnosisKind.READINESS_FAILURE, "Sidecar not injected", [])]
    """
)


def test_load_plugins_from_folder(tmp_path):
    (tmp_path / "mesh.py").write_text(PLUGIN)
    rules = load_plugins(str(tmp_path))
    assert [r.name for r in rules] == ["SidecarMissing"]


def test_load_plugins_missing_folder():
    assert load_plugins(None) == []
    assert load_plugins("/does/not/exist") == []


def test_register_rules_keeps_rank_order(tmp_path, monkeypatch):
    monkeypatch.setattr(engine, "_DEFAULT_RULES", None)
    (tmp_path / "mesh.py").write_text(PLUGIN)

    table = engine.register_rules(load_plugins(str(tmp_path)))
    names = [r.name for r in table]
    assert names.index("NetworkPolicySelectsPod") < names.index("SidecarMissing")
    assert names.index("SidecarMissing") < names.index("IncompleteContainerStatus")

    with pytest.raises(ValueError, match="SidecarMissing"):
        engine.register_rules(load_plugins(str(tmp_path)))
