"""
rewards_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way the job obtains settings.  No
    other component reads configuration files or environment variables.

Architecture position:
    Configuration.  Sits above ``rewards_kernel`` and below the batch
    services.  Values are validated with the pure parsers in
    ``rewards_batch.domain`` (cron, time zone, business days).  The kernel
    never imports from ``rewards_config``; the batch orchestrator
    translates the config into constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- schema or value validation failures.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from rewards_config.loader import load_config
from rewards_config.schema import (
    DatabaseConfig,
    DistributionConfig,
    LoggingConfig,
    RewardsConfig,
    SchedulerConfig,
)

_logger = logging.getLogger("rewards_kernel.config")


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> RewardsConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file merged over the packaged defaults.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    config = load_config(path, environ)
    _logger.info(
        "REWARDS_CONFIG_TRACE",
        extra={
            "source": config.source or "defaults",
            "job_name": config.distribution.job_name,
            "time_zone": config.distribution.time_zone,
            "cron_expression": config.scheduler.cron_expression,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "DistributionConfig",
    "LoggingConfig",
    "RewardsConfig",
    "SchedulerConfig",
    "get_active_config",
]
