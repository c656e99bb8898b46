"""
RewardDistributor -- one execution of the subscription reward job.

Contract:
    ``run()`` claims the day's slot, gates on business days, then credits
    every active enrollment's reward in its own database transaction and
    finalizes the audit row.  It never raises for run-level failures; the
    outcome is returned as a DistributionRunResult and recorded on the
    JobExecution row.

Architecture: rewards_batch/services.  Uses kernel services (ledger,
    enrollment) and selectors, and rewards_batch domain/job audit.

Invariants enforced:
    - One claimed run per (job name, execution date): the claim commits in
      its own transaction before any enrollment is touched.
    - One reward per enrollment per execution date: checked under the
      enrollment row lock and backed by the ledger's UNIQUE marker, so a
      retry after FAILED or CANCELLED never re-credits.
    - Wallet credit, ledger row and progress update commit together.
    - Every exit path after the claim finalizes the audit row.
    - All timestamps from the injected Clock.

Failure modes:
    - Any error while processing an enrollment stops the run; the row is
      marked FAILED with the message.  Enrollments committed before the
      error keep their rewards.
    - Stop signal or deadline between enrollments marks the row CANCELLED.
    - If finalizing the row itself fails the row stays RUNNING and needs
      ``JobAuditService.abandon``.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, tzinfo
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from rewards_kernel.db.engine import session_scope
from rewards_kernel.db.types import to_money
from rewards_kernel.domain.clock import Clock, SystemClock
from rewards_kernel.domain.dtos import (
    SHOPPING_WALLET,
    EnrollmentSnapshot,
    EnrollmentStatus,
    TransactionEntry,
    TransactionReason,
    TransactionType,
)
from rewards_kernel.exceptions import (
    DuplicateRewardError,
    JobAlreadyClaimedError,
    RunCancelledError,
)
from rewards_kernel.logging_config import LogContext, get_logger
from rewards_kernel.models.subscription import EnrollmentModel
from rewards_kernel.selectors.enrollment_selector import EnrollmentSelector
from rewards_kernel.services.enrollment_service import EnrollmentService
from rewards_kernel.services.ledger_service import LedgerService

from rewards_batch.domain.calculator import compute_reward
from rewards_batch.domain.calendar import (
    WEEKDAYS,
    execution_date_for,
    is_business_day,
    resolve_time_zone,
)
from rewards_batch.domain.types import (
    COMPLETED_STATUSES,
    DistributionRunResult,
    EnrollmentOutcome,
    JobExecution,
    JobExecutionStatus,
    RunCounters,
    RunOutcome,
)
from rewards_batch.services.job_audit import JobAuditService

logger = get_logger("batch.distributor")

DEFAULT_JOB_NAME = "subscription-rewards-distribution"
DEFAULT_TIME_ZONE = "Asia/Kolkata"


class RewardDistributor:
    """Runner for the daily subscription reward job.

    Contract:
        - ``run()`` is the single entry point for scheduled and manual runs.
        - Sessions come from ``session_factory``; the runner owns every
          transaction boundary.

    Non-goals:
        - No parallelism across enrollments.
        - Does NOT move saturated enrollments to COMPLETED; they stay
          ACTIVE and are skipped.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        job_name: str = DEFAULT_JOB_NAME,
        wallet_type: str = SHOPPING_WALLET,
        time_zone: str | tzinfo = DEFAULT_TIME_ZONE,
        business_days: frozenset[int] = WEEKDAYS,
        max_run_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._job_name = job_name
        self._wallet_type = wallet_type
        self._tz = resolve_time_zone(time_zone) if isinstance(time_zone, str) else time_zone
        self._business_days = business_days
        self._max_run_seconds = max_run_seconds

    @property
    def job_name(self) -> str:
        return self._job_name

    def execution_date(self) -> date:
        return execution_date_for(self._clock.now(), self._tz)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(
        self,
        stop_event: threading.Event | None = None,
        deadline: datetime | None = None,
    ) -> DistributionRunResult:
        """Execute the job for today's execution date.

        Args:
            stop_event: Checked between enrollments; when set the run stops
                and the day is recorded as CANCELLED.
            deadline: Clock time after which the run stops the same way.
                Defaults to now + ``max_run_seconds`` when that is configured.
        """
        started = self._clock.now()
        execution_date = execution_date_for(started, self._tz)
        if deadline is None and self._max_run_seconds:
            deadline = started + timedelta(seconds=self._max_run_seconds)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(self._actor_id),
        ):
            return self._run(execution_date, stop_event, deadline)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _audit(self, session: Session) -> JobAuditService:
        return JobAuditService(session, clock=self._clock, actor_id=self._actor_id)

    def _run(
        self,
        execution_date: date,
        stop_event: threading.Event | None,
        deadline: datetime | None,
    ) -> DistributionRunResult:
        log_extra = {
            "job_name": self._job_name,
            "execution_date": execution_date.isoformat(),
        }

        with session_scope(self._session_factory) as session:
            existing = self._audit(session).find(self._job_name, execution_date)

        if existing is not None and existing.status in COMPLETED_STATUSES:
            logger.info(
                "distribution_already_completed",
                extra={**log_extra, "status": existing.status.value},
            )
            return DistributionRunResult(
                outcome=RunOutcome.ALREADY_COMPLETED,
                execution_date=execution_date,
                job_execution_id=existing.job_execution_id,
            )
        if existing is not None and existing.status == JobExecutionStatus.RUNNING:
            logger.warning("distribution_already_running", extra=log_extra)
            return DistributionRunResult(
                outcome=RunOutcome.ALREADY_CLAIMED,
                execution_date=execution_date,
                job_execution_id=existing.job_execution_id,
            )

        try:
            with session_scope(self._session_factory) as session:
                execution = self._audit(session).claim(self._job_name, execution_date)
        except JobAlreadyClaimedError as exc:
            logger.info(
                "distribution_claim_rejected",
                extra={**log_extra, "status": exc.status},
            )
            return DistributionRunResult(
                outcome=RunOutcome.ALREADY_CLAIMED,
                execution_date=execution_date,
            )

        with LogContext.bind(job_execution_id=str(execution.job_execution_id)):
            return self._run_claimed(execution, stop_event, deadline)

    def _run_claimed(
        self,
        execution: JobExecution,
        stop_event: threading.Event | None,
        deadline: datetime | None,
    ) -> DistributionRunResult:
        execution_date = execution.execution_date
        job_execution_id = execution.job_execution_id

        if not is_business_day(execution_date, self._business_days):
            with session_scope(self._session_factory) as session:
                self._audit(session).skip(
                    job_execution_id,
                    {
                        "reason": "non_business_day",
                        "executionDate": execution_date.isoformat(),
                    },
                )
            logger.info(
                "distribution_skipped_non_business_day",
                extra={
                    "execution_date": execution_date.isoformat(),
                    "weekday": execution_date.strftime("%A"),
                },
            )
            return DistributionRunResult(
                outcome=RunOutcome.SKIPPED_NON_BUSINESS_DAY,
                execution_date=execution_date,
                job_execution_id=job_execution_id,
            )

        counters = RunCounters()
        try:
            as_of = self._clock.now_utc()
            with session_scope(self._session_factory) as session:
                candidates = EnrollmentSelector(session).active_enrollments(as_of)

            logger.info(
                "distribution_started",
                extra={
                    "execution_date": execution_date.isoformat(),
                    "attempt": execution.attempt,
                    "candidate_count": len(candidates),
                },
            )

            for snapshot in candidates:
                self._check_cancelled(stop_event, deadline, counters)
                self._process_enrollment(snapshot, execution_date, as_of, counters)

            result = self._result(
                RunOutcome.SUCCEEDED, execution_date, job_execution_id, counters,
            )
            with session_scope(self._session_factory) as session:
                self._audit(session).complete(job_execution_id, result.summary())

        except RunCancelledError as exc:
            logger.warning(
                "distribution_cancelled",
                extra={"reason": exc.reason, "processed": exc.processed},
            )
            return self._finalize_unsuccessful(
                RunOutcome.CANCELLED, execution_date, job_execution_id, counters, str(exc),
            )

        except Exception as exc:
            logger.exception(
                "distribution_failed",
                extra={"processed": counters.processed},
            )
            return self._finalize_unsuccessful(
                RunOutcome.FAILED, execution_date, job_execution_id, counters, str(exc),
            )

        logger.info(
            "distribution_completed",
            extra={
                "processed": counters.processed,
                "rewarded": counters.rewarded,
                "already_rewarded": counters.already_rewarded,
                "saturated": counters.saturated,
                "ineligible": counters.ineligible,
                "total_rewarded": str(counters.total_rewarded),
            },
        )
        return result

    def _process_enrollment(
        self,
        snapshot: EnrollmentSnapshot,
        execution_date: date,
        as_of: datetime,
        counters: RunCounters,
    ) -> None:
        """Credit one enrollment in a single transaction.

        Counters change only after the transaction commits.  A failed
        enrollment is not tallied.
        """
        with LogContext.bind(
            enrollment_id=str(snapshot.enrollment_id),
            customer_id=snapshot.customer_id,
        ):
            try:
                with session_scope(self._session_factory) as session:
                    outcome, reward = self._reward_enrollment(
                        session, snapshot.enrollment_id, execution_date, as_of,
                    )
            except DuplicateRewardError:
                logger.info(
                    "reward_recorded_concurrently",
                    extra={"execution_date": execution_date.isoformat()},
                )
                outcome, reward = EnrollmentOutcome.ALREADY_REWARDED, None

            counters.record(outcome, reward)
            if outcome is EnrollmentOutcome.REWARDED:
                logger.info(
                    "enrollment_rewarded",
                    extra={"reward": str(reward)},
                )

    def _reward_enrollment(
        self,
        session: Session,
        enrollment_id: UUID,
        execution_date: date,
        as_of: datetime,
    ) -> tuple[EnrollmentOutcome, Decimal | None]:
        """Returns the outcome and, when rewarded, the credited amount."""
        enrollments = EnrollmentService(session, self._actor_id, self._clock)
        ledger = LedgerService(session, self._actor_id, self._clock)

        enrollment = enrollments.lock(enrollment_id)
        if not _still_eligible(enrollment, as_of):
            logger.info("enrollment_no_longer_eligible", extra={"status": enrollment.status})
            return EnrollmentOutcome.INELIGIBLE, None

        plan = enrollment.plan.to_rules()
        current = to_money(enrollment.current_amount)
        reward = compute_reward(plan, current)
        if reward is None:
            logger.debug(
                "enrollment_saturated",
                extra={"current_amount": str(current), "target_amount": str(plan.target_amount)},
            )
            return EnrollmentOutcome.SATURATED, None

        if ledger.has_reward(enrollment.id, execution_date):
            logger.info(
                "enrollment_already_rewarded",
                extra={"execution_date": execution_date.isoformat()},
            )
            return EnrollmentOutcome.ALREADY_REWARDED, None

        credit = ledger.credit_wallet(enrollment.customer_id, self._wallet_type, reward)
        ledger.append_transaction(
            TransactionEntry(
                wallet_id=credit.wallet_id,
                customer_id=enrollment.customer_id,
                transaction_type=TransactionType.CREDIT,
                reason=TransactionReason.REWARD,
                amount=reward,
                balance_before=credit.balance_before,
                balance_after=credit.balance_after,
                subscription_id=enrollment.id,
                reward_date=execution_date,
                metadata={
                    "planId": str(plan.plan_id),
                    "rewardDate": execution_date.isoformat(),
                    "rewardAmount": str(reward),
                },
            )
        )
        enrollments.apply_reward(enrollment, reward)
        return EnrollmentOutcome.REWARDED, reward

    def _check_cancelled(
        self,
        stop_event: threading.Event | None,
        deadline: datetime | None,
        counters: RunCounters,
    ) -> None:
        if stop_event is not None and stop_event.is_set():
            raise RunCancelledError("stop requested", counters.processed)
        if deadline is not None and self._clock.now() >= deadline:
            raise RunCancelledError(
                f"deadline {deadline.isoformat()} reached", counters.processed,
            )

    def _finalize_unsuccessful(
        self,
        outcome: RunOutcome,
        execution_date: date,
        job_execution_id: UUID,
        counters: RunCounters,
        message: str,
    ) -> DistributionRunResult:
        try:
            with session_scope(self._session_factory) as session:
                audit = self._audit(session)
                if outcome == RunOutcome.CANCELLED:
                    audit.cancel(job_execution_id, message)
                else:
                    audit.fail(job_execution_id, message)
        except Exception:
            logger.exception(
                "job_execution_finalize_failed",
                extra={"intended_outcome": outcome.value},
            )
        return self._result(
            outcome, execution_date, job_execution_id, counters, error_message=message,
        )

    @staticmethod
    def _result(
        outcome: RunOutcome,
        execution_date: date,
        job_execution_id: UUID,
        counters: RunCounters,
        error_message: str | None = None,
    ) -> DistributionRunResult:
        return DistributionRunResult(
            outcome=outcome,
            execution_date=execution_date,
            job_execution_id=job_execution_id,
            processed_count=counters.processed,
            rewarded_count=counters.rewarded,
            already_rewarded_count=counters.already_rewarded,
            saturated_count=counters.saturated,
            ineligible_count=counters.ineligible,
            total_rewarded=counters.total_rewarded,
            error_message=error_message,
        )


def _still_eligible(enrollment: EnrollmentModel, as_of: datetime) -> bool:
    if enrollment.status != EnrollmentStatus.ACTIVE.value:
        return False
    return enrollment.start_date <= as_of <= enrollment.end_date
