"""
rewards_batch.domain -- Pure types and calculations for the distribution job.

ZERO I/O.  All types are frozen dataclasses.
"""

from rewards_batch.domain.types import (
    DistributionRunResult,
    JobExecution,
    JobExecutionStatus,
    RunOutcome,
)

__all__ = [
    "DistributionRunResult",
    "JobExecution",
    "JobExecutionStatus",
    "RunOutcome",
]
