"""
ORM model for the job audit table.

Contract:
    One JobExecutionModel row per (job_name, execution_date).  The row is
    the cross-instance mutual-exclusion anchor: the UNIQUE constraint makes
    a racing second claim fail at INSERT time.

Architecture: rewards_batch/models.  Imports from rewards_kernel.db.base only.

Invariants enforced:
    - UNIQUE(job_name, execution_date).
    - attempt >= 1; incremented each time a FAILED or CANCELLED day is
      re-claimed.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rewards_kernel.db.base import TrackedBase, UTCDateTime

if TYPE_CHECKING:
    from rewards_batch.domain.types import JobExecution


class JobExecutionModel(TrackedBase):
    """Audit and idempotency record for one day's run of a job."""

    __tablename__ = "job_executions"

    __table_args__ = (
        UniqueConstraint("job_name", "execution_date", name="uq_job_execution_day"),
        CheckConstraint("attempt >= 1", name="ck_job_execution_attempt"),
        Index("ix_job_executions_status", "status"),
        Index("ix_job_executions_started_at", "started_at"),
    )

    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    execution_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> JobExecution:
        from rewards_batch.domain.types import JobExecution, JobExecutionStatus

        return JobExecution(
            job_execution_id=self.id,
            job_name=self.job_name,
            execution_date=self.execution_date,
            status=JobExecutionStatus(self.status),
            attempt=self.attempt,
            started_at=self.started_at,
            completed_at=self.completed_at,
            result=self.result,
            error_message=self.error_message,
        )

    def __repr__(self) -> str:
        return (
            f"<JobExecution {self.job_name} {self.execution_date} "
            f"{self.status} attempt={self.attempt}>"
        )
