import os
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

import yaml

from kubectl_diagnose.diagnosis import Diagnosis, DiagnosisKind, Recommendation

TABLE_PATH = os.path.join(os.path.dirname(__file__), "recommendations.yaml")

_TABLE: dict[DiagnosisKind, Recommendation] | None = None


def build_table(spec: Any) -> dict[DiagnosisKind, Recommendation]:
    """
    Validate the raw YAML mapping and turn it into Recommendation entries.
    Every DiagnosisKind must have an entry with at least one action.
    """
    if not isinstance(spec, dict):
        raise ValueError("Recommendation table must be a mapping keyed on diagnosis kind")

    known = {k.value: k for k in DiagnosisKind}
    unknown = set(spec) - set(known)
    if unknown:
        raise ValueError(f"Recommendation table has unknown kinds: {sorted(unknown)}")

    table: dict[DiagnosisKind, Recommendation] = {}
    for name, kind in known.items():
        entry = spec.get(name)
        if not isinstance(entry, dict):
            raise ValueError(f"Recommendation table is missing an entry for {name}")
        actions = entry.get("actions")
        if not isinstance(actions, list) or not actions:
            raise ValueError(f"Recommendation {name}.actions must be a non-empty list")
        table[kind] = Recommendation(
            kind=kind,
            title=str(entry.get("title", name)),
            actions=tuple(str(a) for a in actions),
            references=tuple(str(r) for r in entry.get("references", []) or []),
        )
    return table


def load_table(path: str = TABLE_PATH) -> dict[DiagnosisKind, Recommendation]:
    with open(path, encoding="utf-8") as f:
        return build_table(yaml.safe_load(f))


def get_table() -> dict[DiagnosisKind, Recommendation]:
    global _TABLE
    if _TABLE is None:
        _TABLE = load_table()
    return _TABLE


def recommend(diagnosis: Diagnosis) -> Recommendation:
    return get_table()[diagnosis.kind]


def _fill(template: str, placeholders: dict[str, str]) -> str:
    try:
        return template.format(**placeholders)
    except (KeyError, IndexError, ValueError):
        return template


def attach_recommendations(
    diagnoses: Iterable[Diagnosis],
    *,
    namespace: str = "default",
    name: str = "<name>",
    node: str | None = None,
) -> list[Diagnosis]:
    """
    Return copies of the diagnoses with their recommendation set, the
    reference commands filled in for the subject.
    """
    placeholders = {"namespace": namespace, "name": name, "node": node or "<node>"}
    result = []
    for d in diagnoses:
        rec = recommend(d)
        rec = replace(rec, references=tuple(_fill(r, placeholders) for r in rec.references))
        result.append(d.with_recommendation(rec))
    return result
