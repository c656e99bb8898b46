"""
Configuration schema (``rewards_config.schema``).

Frozen dataclasses produced by the loader.  No I/O and no validation here;
``rewards_config.loader`` rejects bad values before constructing these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class DistributionConfig:
    """Settings for RewardDistributor."""

    job_name: str
    wallet_type: str
    time_zone: str
    business_days: frozenset[int]  # Python weekday numbers, Monday=0
    actor_id: UUID
    max_run_seconds: float | None = None


@dataclass(frozen=True)
class SchedulerConfig:
    cron_expression: str
    tick_interval_seconds: float = 30.0
    run_on_start: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class RewardsConfig:
    """The full runtime configuration."""

    database: DatabaseConfig
    distribution: DistributionConfig
    scheduler: SchedulerConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str | None = None  # Path of the override file, if any
