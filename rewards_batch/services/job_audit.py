"""
JobAuditService -- claim and finalize the per-day job execution slot.

Contract:
    ``claim()`` takes the (job_name, execution_date) slot, ``complete()``,
    ``fail()``, ``skip()`` and ``cancel()`` move a RUNNING row to its
    terminal status, ``abandon()`` is the operator escape hatch for a row
    left RUNNING by a dead process.  Queries return JobExecution DTOs.

Architecture: rewards_batch/services.  Imports from rewards_batch.domain,
    rewards_batch.models and kernel exceptions/logging.

Invariants enforced:
    - The INSERT against UNIQUE(job_name, execution_date) is the real
      concurrency guard; the preceding lookup is only an optimisation.
    - Re-claiming a FAILED or CANCELLED day is a compare-and-set UPDATE on
      (status, attempt), so two replicas cannot both win it.
    - Terminal transitions only from RUNNING.
    - All timestamps from the injected Clock.

Failure modes:
    - JobAlreadyClaimedError: slot held or completed, or a race was lost.
      After a lost INSERT race the session must be rolled back.
    - JobExecutionNotFoundError: unknown id.
    - InvalidJobTransitionError: finalizing a row that is not RUNNING.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rewards_kernel.domain.clock import Clock, SystemClock
from rewards_kernel.exceptions import (
    InvalidJobTransitionError,
    JobAlreadyClaimedError,
    JobExecutionNotFoundError,
)
from rewards_kernel.logging_config import get_logger

from rewards_batch.domain.types import (
    RECLAIMABLE_STATUSES,
    JobExecution,
    JobExecutionStatus,
)
from rewards_batch.models.job_execution import JobExecutionModel

logger = get_logger("batch.job_audit")


class JobAuditService:
    """Job audit store.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the runner commits the claim
          on its own so the slot is visible to other replicas immediately.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find(self, job_name: str, execution_date: date) -> JobExecution | None:
        model = self._find_model(job_name, execution_date)
        return model.to_dto() if model is not None else None

    def get(self, job_execution_id: UUID) -> JobExecution:
        """
        Raises:
            JobExecutionNotFoundError: If no row has this id.
        """
        return self._get_model(job_execution_id).to_dto()

    def list_executions(
        self,
        status: JobExecutionStatus | None = None,
        job_name: str | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[JobExecution]:
        """Newest first.  ``job_name`` matches case-insensitively as a substring."""
        query = self._filtered(select(JobExecutionModel), status, job_name)
        rows = self._session.execute(
            query.order_by(
                JobExecutionModel.started_at.desc(),
                JobExecutionModel.execution_date.desc(),
            )
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def count(
        self,
        status: JobExecutionStatus | None = None,
        job_name: str | None = None,
    ) -> int:
        query = self._filtered(
            select(func.count(JobExecutionModel.id)), status, job_name,
        )
        return int(self._session.execute(query).scalar_one())

    # -------------------------------------------------------------------------
    # Claim
    # -------------------------------------------------------------------------

    def claim(self, job_name: str, execution_date: date) -> JobExecution:
        """Take the day's slot: insert a RUNNING row, or re-claim a failed one.

        Raises:
            JobAlreadyClaimedError: Slot is RUNNING, SUCCESS or SKIPPED, or a
                concurrent claim won the race.
        """
        now = self._clock.now_utc()
        existing = self._find_model(job_name, execution_date)

        if existing is None:
            model = JobExecutionModel(
                job_name=job_name,
                execution_date=execution_date,
                status=JobExecutionStatus.RUNNING.value,
                attempt=1,
                started_at=now,
                created_by_id=self._actor_id,
            )
            model.created_at = now
            model.updated_at = now
            self._session.add(model)
            try:
                self._session.flush()
            except IntegrityError as exc:
                logger.info(
                    "job_claim_race_lost",
                    extra={
                        "job_name": job_name,
                        "execution_date": execution_date.isoformat(),
                    },
                )
                raise JobAlreadyClaimedError(job_name, execution_date) from exc

            logger.info(
                "job_claimed",
                extra={
                    "job_execution_id": str(model.id),
                    "job_name": job_name,
                    "execution_date": execution_date.isoformat(),
                    "attempt": 1,
                },
            )
            return model.to_dto()

        if JobExecutionStatus(existing.status) not in RECLAIMABLE_STATUSES:
            raise JobAlreadyClaimedError(job_name, execution_date, existing.status)

        previous_status = existing.status
        previous_attempt = existing.attempt
        result = self._session.execute(
            update(JobExecutionModel)
            .where(
                JobExecutionModel.id == existing.id,
                JobExecutionModel.status.in_(
                    [s.value for s in RECLAIMABLE_STATUSES]
                ),
                JobExecutionModel.attempt == previous_attempt,
            )
            .values(
                status=JobExecutionStatus.RUNNING.value,
                attempt=previous_attempt + 1,
                started_at=now,
                completed_at=None,
                result=None,
                error_message=None,
                updated_at=now,
                updated_by_id=self._actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise JobAlreadyClaimedError(job_name, execution_date, previous_status)

        self._session.refresh(existing)
        logger.info(
            "job_reclaimed",
            extra={
                "job_execution_id": str(existing.id),
                "job_name": job_name,
                "execution_date": execution_date.isoformat(),
                "previous_status": previous_status,
                "attempt": existing.attempt,
            },
        )
        return existing.to_dto()

    # -------------------------------------------------------------------------
    # Terminal transitions
    # -------------------------------------------------------------------------

    def complete(self, job_execution_id: UUID, result: dict[str, Any]) -> JobExecution:
        return self._finish(
            job_execution_id, JobExecutionStatus.SUCCESS, result=result,
        )

    def fail(self, job_execution_id: UUID, error_message: str) -> JobExecution:
        return self._finish(
            job_execution_id, JobExecutionStatus.FAILED, error_message=error_message,
        )

    def skip(self, job_execution_id: UUID, result: dict[str, Any]) -> JobExecution:
        return self._finish(
            job_execution_id, JobExecutionStatus.SKIPPED, result=result,
        )

    def cancel(self, job_execution_id: UUID, error_message: str) -> JobExecution:
        return self._finish(
            job_execution_id, JobExecutionStatus.CANCELLED, error_message=error_message,
        )

    def abandon(self, job_execution_id: UUID, reason: str) -> JobExecution:
        """Mark a stuck RUNNING row FAILED so the day can be run again.

        Only for rows whose process is known to be gone; a live run would
        keep crediting while a new claim starts.
        """
        execution = self._finish(
            job_execution_id,
            JobExecutionStatus.FAILED,
            error_message=f"Abandoned by operator: {reason}",
        )
        logger.warning(
            "job_execution_abandoned",
            extra={
                "job_execution_id": str(job_execution_id),
                "job_name": execution.job_name,
                "execution_date": execution.execution_date.isoformat(),
                "reason": reason,
            },
        )
        return execution

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _find_model(self, job_name: str, execution_date: date) -> JobExecutionModel | None:
        return self._session.execute(
            select(JobExecutionModel).where(
                JobExecutionModel.job_name == job_name,
                JobExecutionModel.execution_date == execution_date,
            )
        ).scalar_one_or_none()

    def _get_model(self, job_execution_id: UUID, lock: bool = False) -> JobExecutionModel:
        query = select(JobExecutionModel).where(JobExecutionModel.id == job_execution_id)
        if lock:
            query = query.with_for_update()
        model = self._session.execute(query).scalar_one_or_none()
        if model is None:
            raise JobExecutionNotFoundError(str(job_execution_id))
        return model

    def _finish(
        self,
        job_execution_id: UUID,
        status: JobExecutionStatus,
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> JobExecution:
        model = self._get_model(job_execution_id, lock=True)
        if model.status != JobExecutionStatus.RUNNING.value:
            raise InvalidJobTransitionError(
                str(job_execution_id), model.status, status.value,
            )

        now = self._clock.now_utc()
        model.status = status.value
        model.completed_at = now
        model.result = result
        model.error_message = error_message
        model.updated_at = now
        model.updated_by_id = self._actor_id
        self._session.flush()

        logger.info(
            "job_execution_finalized",
            extra={
                "job_execution_id": str(model.id),
                "job_name": model.job_name,
                "execution_date": model.execution_date.isoformat(),
                "status": status.value,
                "attempt": model.attempt,
            },
        )
        return model.to_dto()

    @staticmethod
    def _filtered(query, status: JobExecutionStatus | None, job_name: str | None):
        if status is not None:
            query = query.where(JobExecutionModel.status == JobExecutionStatus(status).value)
        if job_name:
            query = query.where(
                func.lower(JobExecutionModel.job_name).contains(job_name.lower())
            )
        return query
