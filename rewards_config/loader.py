"""
Configuration loader (``rewards_config.loader``).

Responsibility
--------------
Reads the packaged ``defaults.yaml``, merges an optional override file over
it, applies ``REWARDS_*`` environment overrides and parses the result into
the frozen dataclasses of ``rewards_config.schema``.  Runtime callers go
through ``rewards_config.get_active_config()``.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, wrong type, unknown time zone or day name,
  invalid cron expression, non-UUID actor  -> ``ValueError``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Mapping
from uuid import UUID

import yaml

from rewards_batch.domain.calendar import parse_business_days, resolve_time_zone
from rewards_batch.domain.schedule import parse_cron
from rewards_config.schema import (
    DatabaseConfig,
    DistributionConfig,
    LoggingConfig,
    RewardsConfig,
    SchedulerConfig,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = ("database", "distribution", "scheduler", "logging")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Environment variable -> (section, key); first match in each tuple wins
_ENV_OVERRIDES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("REWARDS_DATABASE_URL", "DATABASE_URL"), "database", "url"),
    (("REWARDS_LOG_LEVEL",), "logging", "level"),
    (("REWARDS_TIME_ZONE",), "distribution", "time_zone"),
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_sections(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` over ``base`` one section deep."""
    merged = {name: dict(values or {}) for name, values in base.items()}
    for name, values in override.items():
        if name not in _SECTIONS:
            raise ValueError(f"Unknown configuration section: {name!r}")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Section {name!r} must be a mapping")
        merged.setdefault(name, {}).update(values)
    return merged


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str],
) -> dict[str, Any]:
    result = {name: dict(values) for name, values in data.items()}
    for names, section, key in _ENV_OVERRIDES:
        for name in names:
            value = environ.get(name)
            if value:
                result.setdefault(section, {})[key] = value
                break
    return result


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> RewardsConfig:
    """Defaults, then ``path``, then environment."""
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_sections(data, load_yaml_file(Path(path)))
    data = apply_env_overrides(data, os.environ if environ is None else environ)
    return parse_config(data, source=str(path) if path is not None else None)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_config(data: dict[str, Any], source: str | None = None) -> RewardsConfig:
    return RewardsConfig(
        database=parse_database(_section(data, "database")),
        distribution=parse_distribution(_section(data, "distribution")),
        scheduler=parse_scheduler(_section(data, "scheduler")),
        logging=parse_logging(_section(data, "logging")),
        source=source,
    )


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    _reject_unknown("database", data, DatabaseConfig)
    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url is required")
    return DatabaseConfig(
        url=url.strip(),
        echo=_bool("database.echo", data.get("echo", False)),
        pool_size=_positive_int("database.pool_size", data.get("pool_size", 5)),
        max_overflow=_non_negative_int("database.max_overflow", data.get("max_overflow", 10)),
        pool_timeout=_positive_int("database.pool_timeout", data.get("pool_timeout", 30)),
        pool_recycle=_positive_int("database.pool_recycle", data.get("pool_recycle", 1800)),
    )


def parse_distribution(data: dict[str, Any]) -> DistributionConfig:
    _reject_unknown("distribution", data, DistributionConfig)

    time_zone = str(data.get("time_zone", "")).strip()
    _validated("distribution.time_zone", resolve_time_zone, time_zone)

    days = data.get("business_days")
    if isinstance(days, str):
        days = days.replace(",", " ").split()
    business_days = _validated("distribution.business_days", parse_business_days, days)

    try:
        actor_id = UUID(str(data.get("actor_id")))
    except ValueError:
        raise ValueError(f"distribution.actor_id is not a UUID: {data.get('actor_id')!r}") from None

    max_run = data.get("max_run_seconds")
    if max_run is not None:
        max_run = _positive_float("distribution.max_run_seconds", max_run)

    return DistributionConfig(
        job_name=_required_str("distribution.job_name", data.get("job_name")),
        wallet_type=_required_str("distribution.wallet_type", data.get("wallet_type")),
        time_zone=time_zone,
        business_days=business_days,
        actor_id=actor_id,
        max_run_seconds=max_run,
    )


def parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    _reject_unknown("scheduler", data, SchedulerConfig)
    cron = _required_str("scheduler.cron_expression", data.get("cron_expression"))
    _validated("scheduler.cron_expression", parse_cron, cron)
    interval = _positive_float(
        "scheduler.tick_interval_seconds", data.get("tick_interval_seconds", 30),
    )
    return SchedulerConfig(
        cron_expression=cron,
        tick_interval_seconds=interval,
        run_on_start=_bool("scheduler.run_on_start", data.get("run_on_start", False)),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    _reject_unknown("logging", data, LoggingConfig)
    level = str(data.get("level", "INFO")).strip().upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {_LOG_LEVELS}, got {level!r}")
    return LoggingConfig(level=level)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Section {name!r} must be a mapping")
    return section


def _reject_unknown(name: str, data: dict[str, Any], schema: type) -> None:
    unknown = set(data) - set(schema.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown keys in {name}: {sorted(unknown)}")


def _required_str(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required")
    return value.strip()


def _bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false", "yes", "no", "1", "0"):
        return value.lower() in ("true", "yes", "1")
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _validated(name: str, parse: Callable[[Any], Any], value: Any) -> Any:
    """Run a domain parser, prefixing its ValueError with the setting name."""
    try:
        return parse(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name}: {exc}") from None


def _positive_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if result <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return result


def _positive_int(name: str, value: Any) -> int:
    result = _int(name, value)
    if result <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return result


def _non_negative_int(name: str, value: Any) -> int:
    result = _int(name, value)
    if result < 0:
        raise ValueError(f"{name} must not be negative, got {value!r}")
    return result


def _int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
