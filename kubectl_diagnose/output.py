import json
from typing import Any

import yaml

from kubectl_diagnose.diagnosis import DiagnosticReport, SubjectRef
from kubectl_diagnose.errors import DiagnoseError

FORMATS = ("text", "json", "yaml")

# ----------------------------
# Output formatting
# ----------------------------


def _dump(doc: Any, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(doc, indent=2)
    return yaml.safe_dump(doc, sort_keys=False)


def render(report: DiagnosticReport, fmt: str = "text") -> str:
    """
    Render one report.
    - json / yaml: the report document, with an explicit null `error`
    - text: subject header, then each diagnosis in rank order with its
      evidence and recommended actions
    """
    if fmt in ("json", "yaml"):
        return _dump(report.to_dict(), fmt)

    subject = report.subject
    lines = [
        f"{subject.kind.title()}: {subject.namespace}/{subject.name}",
        f"Mode: {report.mode}",
    ]

    if not report.diagnoses:
        lines.append("\nNo issues found.")
        return "\n".join(lines)

    for i, d in enumerate(report.diagnoses, start=1):
        lines.append(f"\n{i}. {d.kind.value} [{d.severity}, rank {d.rank}]")
        lines.append(f"   {d.summary}")
        if d.evidence:
            lines.append("   Evidence:")
            for e in d.evidence:
                lines.append(f"     - {e.detail} ({e.source})")
        if d.recommendation is not None:
            lines.append(f"   Recommendation: {d.recommendation.title}")
            for action in d.recommendation.actions:
                lines.append(f"     - {action}")
            if d.recommendation.references:
                lines.append("   Checks:")
                for ref in d.recommendation.references:
                    lines.append(f"     $ {ref}")

    return "\n".join(lines)


def render_error(subject: SubjectRef | None, error: DiagnoseError, fmt: str = "text") -> str:
    if fmt in ("json", "yaml"):
        doc = {
            "subject": (
                {"kind": subject.kind, "namespace": subject.namespace, "name": subject.name}
                if subject
                else None
            ),
            "diagnoses": [],
            "error": error.to_dict(),
        }
        return _dump(doc, fmt)
    return f"{error.kind}: {error.message}"


def render_sweep(namespace: str, result, fmt: str = "text") -> str:
    if fmt in ("json", "yaml"):
        doc = {
            "namespace": namespace,
            "reports": [result.reports[name].to_dict() for name in sorted(result.reports)],
            "errors": {name: e.to_dict() for name, e in sorted(result.errors.items())},
            "skipped": list(result.skipped),
        }
        return _dump(doc, fmt)

    lines = [f"Namespace: {namespace}"]
    for name in sorted(result.reports):
        kinds = [d.kind.value for d in result.reports[name].diagnoses]
        lines.append(f"  {name}: {', '.join(kinds) if kinds else 'OK'}")
    for name, e in sorted(result.errors.items()):
        lines.append(f"  {name}: {e.kind}: {e.message}")
    for name in result.skipped:
        lines.append(f"  {name}: skipped (cancelled)")
    return "\n".join(lines)


def render_rules(rules: list[dict[str, Any]], fmt: str = "text") -> str:
    if fmt in ("json", "yaml"):
        return _dump(rules, fmt)
    lines = [f"{'RANK':>4}  {'RULE':<28} {'CATEGORY':<18} PHASES"]
    for r in rules:
        phases = ",".join(r["phases"]) or "*"
        lines.append(f"{r['rank']:>4}  {r['name']:<28} {r['category']:<18} {phases}")
    return "\n".join(lines)
