"""
rewards_batch.domain.types -- Pure frozen dataclasses for the distribution job.

ZERO I/O.

Invariants enforced:
    - JobExecution is an immutable snapshot; status changes go through
      JobAuditService and produce a new snapshot.
    - A claimed slot always ends SUCCESS, FAILED, SKIPPED or CANCELLED
      unless the process dies mid-run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class JobExecutionStatus(str, Enum):
    """Lifecycle of one (job name, execution date) slot."""

    RUNNING = "RUNNING"  # Claimed, work in progress
    SUCCESS = "SUCCESS"  # Every candidate enrollment processed
    FAILED = "FAILED"  # Run-level error; the day may be re-claimed
    SKIPPED = "SKIPPED"  # Not a business day
    CANCELLED = "CANCELLED"  # Stop signal or deadline; the day may be re-claimed


# A prior row in one of these lets a new run take the slot over
RECLAIMABLE_STATUSES = frozenset({
    JobExecutionStatus.FAILED,
    JobExecutionStatus.CANCELLED,
})

# A prior row in one of these makes the day a no-op
COMPLETED_STATUSES = frozenset({
    JobExecutionStatus.SUCCESS,
    JobExecutionStatus.SKIPPED,
})


class RunOutcome(str, Enum):
    """What a single RewardDistributor.run() call did."""

    ALREADY_COMPLETED = "already_completed"
    ALREADY_CLAIMED = "already_claimed"
    SKIPPED_NON_BUSINESS_DAY = "skipped_non_business_day"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self in (RunOutcome.FAILED, RunOutcome.CANCELLED)


class EnrollmentOutcome(str, Enum):
    """What happened to one candidate enrollment inside a run."""

    REWARDED = "rewarded"
    ALREADY_REWARDED = "already_rewarded"
    SATURATED = "saturated"
    INELIGIBLE = "ineligible"


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class JobExecution:
    """Immutable snapshot of a job audit row."""

    job_execution_id: UUID
    job_name: str
    execution_date: date
    status: JobExecutionStatus
    attempt: int = 1
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class DistributionRunResult:
    """Outcome and counters of one run.

    ``processed_count`` counts candidate enrollments whose transaction
    finished (committed, or lost to a concurrent reward); the other four
    counts partition it.  An enrollment whose transaction failed is in
    none of them.
    """

    outcome: RunOutcome
    execution_date: date
    job_execution_id: UUID | None = None
    processed_count: int = 0
    rewarded_count: int = 0
    already_rewarded_count: int = 0
    saturated_count: int = 0
    ineligible_count: int = 0
    total_rewarded: Decimal = Decimal("0")
    error_message: str | None = None

    def summary(self) -> dict[str, Any]:
        """JSON-safe payload stored as the audit row's result."""
        return {
            "processedCount": self.processed_count,
            "rewardedCount": self.rewarded_count,
            "alreadyRewardedCount": self.already_rewarded_count,
            "saturatedCount": self.saturated_count,
            "ineligibleCount": self.ineligible_count,
            "totalRewarded": str(self.total_rewarded),
            "executionDate": self.execution_date.isoformat(),
        }


@dataclass
class RunCounters:
    """Mutable tally kept by the runner while it walks enrollments."""

    processed: int = 0
    rewarded: int = 0
    already_rewarded: int = 0
    saturated: int = 0
    ineligible: int = 0
    total_rewarded: Decimal = field(default_factory=lambda: Decimal("0"))

    def record(self, outcome: EnrollmentOutcome, reward: Decimal | None = None) -> None:
        """Tally one enrollment once its transaction has finished."""
        self.processed += 1
        if outcome is EnrollmentOutcome.REWARDED:
            self.rewarded += 1
            self.total_rewarded += reward
        elif outcome is EnrollmentOutcome.ALREADY_REWARDED:
            self.already_rewarded += 1
        elif outcome is EnrollmentOutcome.SATURATED:
            self.saturated += 1
        else:
            self.ineligible += 1
