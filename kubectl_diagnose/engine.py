import logging
from collections.abc import Iterable, Sequence
from typing import Any

from kubectl_diagnose.config import DiagnoseConfig
from kubectl_diagnose.diagnosis import Diagnosis, DiagnosisKind, Evidence
from kubectl_diagnose.loader import load_rules
from kubectl_diagnose.model import (
    EventRecord,
    NetworkPolicySet,
    NodeSnapshot,
    PodSnapshot,
    ServiceTopology,
    parse_events,
)
from kubectl_diagnose.rules.base_rule import DiagnosticRule, RuleContext
from kubectl_diagnose.timeline import build_timeline

logger = logging.getLogger(__name__)

# Partial provider data surfaces as these inside rules
DATA_ERRORS = (KeyError, AttributeError, TypeError, ValueError, IndexError)

_DEFAULT_RULES: tuple[DiagnosticRule, ...] | None = None


def get_default_rules() -> tuple[DiagnosticRule, ...]:
    global _DEFAULT_RULES
    if _DEFAULT_RULES is None:
        _DEFAULT_RULES = tuple(load_rules())
    return _DEFAULT_RULES


def register_rules(extra: Iterable[DiagnosticRule]) -> tuple[DiagnosticRule, ...]:
    """Add plugin rules to the default table, keeping rank order."""
    global _DEFAULT_RULES
    combined = list(get_default_rules()) + list(extra)
    names = [r.name for r in combined]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate rule names: {duplicates}")
    _DEFAULT_RULES = tuple(sorted(combined, key=lambda r: r.priority))
    return _DEFAULT_RULES


def describe_rules(rules: Iterable[DiagnosticRule] | None = None) -> list[dict[str, Any]]:
    """
    The rule table in evaluation order, for inspection.
    """
    rules = get_default_rules() if rules is None else rules
    return [
        {
            "rank": r.priority,
            "name": r.name,
            "category": r.category,
            "severity": r.severity,
            "phases": list(r.phases),
            "requires": list(r.requires),
            "description": (r.__doc__ or "").strip().splitlines()[0] if r.__doc__ else "",
        }
        for r in sorted(rules, key=lambda r: r.priority)
    ]


def _applicable(rule: DiagnosticRule, ctx: RuleContext, config: DiagnoseConfig) -> bool:
    if config.enabled_categories and rule.category not in config.enabled_categories:
        return False
    if rule.category in config.disabled_categories:
        return False

    missing = set(rule.requires) - ctx.available()
    if missing:
        logger.debug("Skipping '%s': missing inputs %s", rule.name, sorted(missing))
        return False

    # Phase gating
    if rule.phases:
        if ctx.pod is None or ctx.pod.phase.value not in rule.phases:
            return False

    return True


def _check_contract(rule: DiagnosticRule, produced: Any) -> list[Diagnosis]:
    if not isinstance(produced, list):
        raise TypeError(f"{rule.name}.diagnose() must return a list")
    for d in produced:
        if not isinstance(d, Diagnosis):
            raise TypeError(f"{rule.name}.diagnose() must return Diagnosis objects")
    if not produced:
        raise ValueError(f"{rule.name}.diagnose() returned nothing after matches() was True")
    return produced


def _degraded(rule: DiagnosticRule, err: Exception) -> Diagnosis:
    return Diagnosis(
        kind=DiagnosisKind.INSUFFICIENT_DATA,
        rank=rule.priority,
        rule=rule.name,
        summary=f"Rule {rule.name} could not be evaluated on the available data",
        category="Data",
        severity="info",
        evidence=(Evidence(source=f"rule[{rule.name}]", detail=f"{type(err).__name__}: {err}"),),
    )


def classify(
    snapshot: PodSnapshot | None,
    events: Sequence[EventRecord] | Any = (),
    node: NodeSnapshot | None = None,
    service: ServiceTopology | None = None,
    policies: NetworkPolicySet | None = None,
    *,
    rules: Iterable[DiagnosticRule] | None = None,
    config: DiagnoseConfig | None = None,
) -> list[Diagnosis]:
    """
    Map one consistent snapshot to the ordered list of matching diagnoses.

    - Every applicable rule is evaluated; all matches are returned
    - Output is ordered by rule rank, then rule table order, then the
      order a rule emitted its diagnoses
    - Missing optional data never raises: a rule that trips over partial
      data contributes an InsufficientData diagnosis instead
    - Pure: identical inputs give identical output
    """
    config = config or DiagnoseConfig()
    rules = get_default_rules() if rules is None else tuple(rules)
    event_records = parse_events(events)

    ctx = RuleContext(
        pod=snapshot,
        events=event_records,
        timeline=build_timeline(event_records, reference_time=config.reference_time),
        node=node,
        service=service,
        policies=policies,
        config=config,
    )

    ordered = sorted(enumerate(rules), key=lambda pair: (pair[1].priority, pair[0]))

    diagnoses: list[Diagnosis] = []
    seen: set[tuple[DiagnosisKind, str, str]] = set()

    for _, rule in ordered:
        if not _applicable(rule, ctx, config):
            continue

        try:
            if not rule.matches(ctx):
                continue
            produced = rule.diagnose(ctx)
        except DATA_ERRORS as err:
            logger.warning("Rule '%s' failed on partial data: %s", rule.name, err)
            produced = [_degraded(rule, err)]
        else:
            produced = _check_contract(rule, produced)

        for d in produced:
            key = (d.kind, d.rule, d.summary)
            if key in seen:
                continue
            seen.add(key)
            diagnoses.append(d)
            logger.debug("Rule '%s' matched: %s (rank %d)", rule.name, d.kind.value, d.rank)

    return diagnoses
