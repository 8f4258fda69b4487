import logging
import os
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any

import yaml

from kubectl_diagnose.model import parse_time

logger = logging.getLogger(__name__)

ENV_PREFIX = "KUBECTL_DIAGNOSE_"


@dataclass(frozen=True)
class DiagnoseConfig:
    # Classifier
    scheduling_staleness_minutes: float = 10.0
    reference_time: datetime | None = None  # None = now
    enabled_categories: tuple[str, ...] = ()
    disabled_categories: tuple[str, ...] = ()

    # Orchestrator
    timeout_seconds: float = 10.0
    sweep_workers: int = 4

    def with_overrides(self, **overrides: Any) -> "DiagnoseConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _env_list(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _coerce(name: str, value: Any) -> Any:
    if name in ("scheduling_staleness_minutes", "timeout_seconds"):
        value = float(value)
        if value <= 0:
            raise ValueError(f"{name} must be positive")
        return value
    if name == "sweep_workers":
        value = int(value)
        if value < 1:
            raise ValueError("sweep_workers must be at least 1")
        return value
    if name == "reference_time":
        parsed = parse_time(value)
        if value and parsed is None:
            raise ValueError(f"reference_time '{value}' is not an ISO-8601 timestamp")
        return parsed
    if name in ("enabled_categories", "disabled_categories"):
        if isinstance(value, str):
            return _env_list(value)
        return tuple(str(v) for v in value or ())
    return value


def load_config(path: str | None = None, env: dict[str, str] | None = None) -> DiagnoseConfig:
    """
    Build the configuration from defaults, then an optional YAML file,
    then KUBECTL_DIAGNOSE_* environment variables.
    """
    env = os.environ if env is None else env
    known = {f.name for f in fields(DiagnoseConfig)}
    values: dict[str, Any] = {}

    if path:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Config file {path} has unknown keys: {sorted(unknown)}")
        values.update(data)
        logger.debug("Loaded config file %s", path)

    for name in known:
        raw = (env.get(ENV_PREFIX + name.upper()) or "").strip()
        if raw:
            values[name] = raw

    return DiagnoseConfig(**{k: _coerce(k, v) for k, v in values.items()})
