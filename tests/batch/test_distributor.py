"""
Tests for rewards_batch.services.distributor -- the daily reward run.

Uses a real SQLite database file and a DeterministicClock pinned to
Wednesday 2024-01-03 10:00 Asia/Kolkata unless a test moves it.
"""

import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from rewards_kernel.db.engine import session_scope
from rewards_kernel.domain.dtos import (
    SHOPPING_WALLET,
    EnrollmentStatus,
    TransactionEntry,
    TransactionReason,
    TransactionType,
)
from rewards_kernel.models.subscription import EnrollmentModel
from rewards_kernel.models.wallet import WalletModel, WalletTransactionModel
from rewards_kernel.selectors.enrollment_selector import EnrollmentSelector
from rewards_kernel.selectors.ledger_selector import LedgerSelector
from rewards_kernel.services.ledger_service import LedgerService

from rewards_batch.domain.types import JobExecutionStatus, RunOutcome
from rewards_batch.services.distributor import DEFAULT_JOB_NAME, RewardDistributor
from rewards_batch.services.job_audit import JobAuditService

WEDNESDAY = date(2024, 1, 3)


# =============================================================================
# Helpers
# =============================================================================


def _current_amount(session_factory, enrollment_id) -> Decimal:
    with session_scope(session_factory) as session:
        return session.get(EnrollmentModel, enrollment_id).current_amount


def _transactions(session_factory, customer_id="cust-001") -> list:
    with session_scope(session_factory) as session:
        rows = session.execute(
            select(WalletTransactionModel)
            .where(WalletTransactionModel.customer_id == customer_id)
            .order_by(WalletTransactionModel.reward_date)
        ).scalars().all()
        return [row.to_dto() for row in rows]


def _balance(session_factory, customer_id="cust-001") -> Decimal | None:
    with session_scope(session_factory) as session:
        wallet = LedgerSelector(session).get_wallet(customer_id, SHOPPING_WALLET)
        return wallet.balance if wallet is not None else None


def _job_row(session_factory, clock, actor_id, execution_date=WEDNESDAY):
    with session_scope(session_factory) as session:
        return JobAuditService(session, clock=clock, actor_id=actor_id).find(
            DEFAULT_JOB_NAME, execution_date,
        )


def _set_ist(clock, year, month, day, hour=10, minute=0):
    ist = timezone(timedelta(hours=5, minutes=30))
    clock.set_time(datetime(year, month, day, hour, minute, tzinfo=ist))


# =============================================================================
# Reward arithmetic
# =============================================================================


class TestRewardArithmetic:

    def test_clamps_final_reward_to_target(
        self, distributor, session_factory, create_plan, create_enrollment,
    ):
        plan_id = create_plan("10.00", "100.00")
        enrollment_id = create_enrollment(plan_id, current_amount="95.00")

        result = distributor.run()

        assert result.outcome == RunOutcome.SUCCEEDED
        assert result.rewarded_count == 1
        assert result.total_rewarded == Decimal("5.00")
        assert _current_amount(session_factory, enrollment_id) == Decimal("100.00")
        assert _balance(session_factory) == Decimal("5.00")

        [txn] = _transactions(session_factory)
        assert txn.amount == Decimal("5.00")
        assert txn.transaction_type == TransactionType.CREDIT
        assert txn.reason == TransactionReason.REWARD
        assert txn.balance_before == Decimal("0")
        assert txn.balance_after == Decimal("5.00")
        assert txn.subscription_id == enrollment_id
        assert txn.reward_date == WEDNESDAY
        assert txn.metadata["planId"] == str(plan_id)
        assert txn.metadata["rewardDate"] == "2024-01-03"
        assert Decimal(txn.metadata["rewardAmount"]) == Decimal("5.00")

    def test_five_steady_runs_reach_target(
        self, distributor, clock, session_factory, create_plan, create_enrollment,
    ):
        enrollment_id = create_enrollment(create_plan("10.00", "50.00"))
        # Wed, Thu, Fri, Mon, Tue
        business_days = [(2024, 1, 3), (2024, 1, 4), (2024, 1, 5), (2024, 1, 8), (2024, 1, 9)]

        for y, m, d in business_days:
            _set_ist(clock, y, m, d)
            result = distributor.run()
            assert result.outcome == RunOutcome.SUCCEEDED
            assert result.total_rewarded == Decimal("10.00")

        assert _current_amount(session_factory, enrollment_id) == Decimal("50.00")
        txns = _transactions(session_factory)
        assert [t.amount for t in txns] == [Decimal("10.00")] * 5
        assert [t.balance_after for t in txns] == [
            Decimal("10"), Decimal("20"), Decimal("30"), Decimal("40"), Decimal("50"),
        ]

    def test_saturated_enrollment_is_a_noop(
        self, distributor, session_factory, create_plan, create_enrollment,
    ):
        enrollment_id = create_enrollment(create_plan("10.00", "50.00"), current_amount="50.00")

        result = distributor.run()

        assert result.outcome == RunOutcome.SUCCEEDED
        assert result.processed_count == 1
        assert result.saturated_count == 1
        assert result.rewarded_count == 0
        assert _transactions(session_factory) == []
        assert _balance(session_factory) is None
        assert _current_amount(session_factory, enrollment_id) == Decimal("50.00")

    def test_ledger_stays_consistent_across_customers(
        self, distributor, clock, session_factory, create_plan, create_enrollment,
    ):
        fast = create_plan("25.00", "60.00")
        slow = create_plan("0.50", "10.00")
        create_enrollment(fast, customer_id="cust-001")
        create_enrollment(slow, customer_id="cust-001")
        create_enrollment(fast, customer_id="cust-002", current_amount="55.00")

        for day in (3, 4, 5):
            _set_ist(clock, 2024, 1, day)
            distributor.run()

        with session_scope(session_factory) as session:
            rows = session.execute(select(WalletTransactionModel)).scalars().all()
            for row in rows:
                assert row.balance_after - row.balance_before == row.amount
            reports = LedgerSelector(session).verify_all()

        assert len(reports) == 2
        assert all(r.is_consistent for r in reports)
        by_customer = {r.customer_id: r for r in reports}
        # 25 + 25 + 10 (clamped) and 0.50 x 3
        assert by_customer["cust-001"].stored_balance == Decimal("61.50")
        assert by_customer["cust-002"].stored_balance == Decimal("5.00")


# =============================================================================
# Idempotency and the business-day gate
# =============================================================================


class TestIdempotency:

    def test_second_run_same_day_is_noop(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
    ):
        create_enrollment(create_plan("10.00", "100.00"))

        first = distributor.run()
        clock.advance(3600)
        second = distributor.run()

        assert first.outcome == RunOutcome.SUCCEEDED
        assert second.outcome == RunOutcome.ALREADY_COMPLETED
        assert second.job_execution_id == first.job_execution_id
        assert len(_transactions(session_factory)) == 1
        assert _balance(session_factory) == Decimal("10.00")

        row = _job_row(session_factory, clock, actor_id)
        assert row.status == JobExecutionStatus.SUCCESS
        assert row.result == {
            "processedCount": 1,
            "rewardedCount": 1,
            "alreadyRewardedCount": 0,
            "saturatedCount": 0,
            "ineligibleCount": 0,
            "totalRewarded": str(first.total_rewarded),
            "executionDate": "2024-01-03",
        }

    def test_running_row_blocks_run(self, distributor, session_factory, clock, actor_id):
        with session_scope(session_factory) as session:
            JobAuditService(session, clock=clock, actor_id=actor_id).claim(
                DEFAULT_JOB_NAME, WEDNESDAY,
            )

        result = distributor.run()

        assert result.outcome == RunOutcome.ALREADY_CLAIMED
        assert _job_row(session_factory, clock, actor_id).status == JobExecutionStatus.RUNNING

    def test_claim_race_treated_as_already_claimed(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
        monkeypatch,
    ):
        create_enrollment(create_plan())
        with session_scope(session_factory) as session:
            JobAuditService(session, clock=clock, actor_id=actor_id).claim(
                DEFAULT_JOB_NAME, WEDNESDAY,
            )
        # This replica's lookup ran before the other replica's insert committed
        monkeypatch.setattr(JobAuditService, "_find_model", lambda self, *args: None)

        result = distributor.run()

        assert result.outcome == RunOutcome.ALREADY_CLAIMED
        assert _transactions(session_factory) == []

    def test_days_are_keyed_in_business_time_zone(
        self, distributor, clock, session_factory, actor_id, create_plan, create_enrollment,
    ):
        create_enrollment(create_plan())
        # Sunday 18:30 UTC is Monday 00:00 in Asia/Kolkata
        clock.set_time(datetime(2024, 1, 7, 18, 30, tzinfo=timezone.utc))

        result = distributor.run()

        assert result.outcome == RunOutcome.SUCCEEDED
        assert result.execution_date == date(2024, 1, 8)
        [txn] = _transactions(session_factory)
        assert txn.reward_date == date(2024, 1, 8)


class TestBusinessDayGate:

    @pytest.mark.parametrize("day", [6, 7])
    def test_weekend_processes_nothing_and_finalizes(
        self, distributor, clock, session_factory, actor_id, create_plan, create_enrollment, day,
    ):
        enrollment_id = create_enrollment(create_plan())
        _set_ist(clock, 2024, 1, day)

        result = distributor.run()

        assert result.outcome == RunOutcome.SKIPPED_NON_BUSINESS_DAY
        assert result.processed_count == 0
        assert _transactions(session_factory) == []
        assert _current_amount(session_factory, enrollment_id) == Decimal("0")

        row = _job_row(session_factory, clock, actor_id, date(2024, 1, day))
        assert row.status == JobExecutionStatus.SKIPPED
        assert row.completed_at is not None
        assert row.result == {
            "reason": "non_business_day",
            "executionDate": f"2024-01-0{day}",
        }

    def test_skipped_day_is_not_rerun(self, distributor, clock):
        _set_ist(clock, 2024, 1, 6)
        distributor.run()

        assert distributor.run().outcome == RunOutcome.ALREADY_COMPLETED

    def test_custom_business_days(self, session_factory, clock, actor_id, create_plan, create_enrollment):
        create_enrollment(create_plan())
        _set_ist(clock, 2024, 1, 6)
        saturday_only = RewardDistributor(
            session_factory, clock=clock, actor_id=actor_id, business_days=frozenset({5}),
        )

        assert saturday_only.run().outcome == RunOutcome.SUCCEEDED


# =============================================================================
# Candidate selection
# =============================================================================


class TestIsolation:

    def test_only_active_in_window_enrollments_rewarded(
        self, distributor, session_factory, clock, create_plan, create_enrollment,
    ):
        plan_id = create_plan("10.00", "100.00")
        now = clock.now_utc()
        active = create_enrollment(plan_id, customer_id="active")
        create_enrollment(plan_id, customer_id="paused", status=EnrollmentStatus.PAUSED)
        create_enrollment(plan_id, customer_id="cancelled", status=EnrollmentStatus.CANCELLED)
        create_enrollment(
            plan_id, customer_id="future", start_date=now + timedelta(days=1),
        )
        create_enrollment(
            plan_id, customer_id="ended",
            start_date=now - timedelta(days=60), end_date=now - timedelta(days=1),
        )

        result = distributor.run()

        assert result.processed_count == 1
        assert _current_amount(session_factory, active) == Decimal("10.00")
        for customer in ("paused", "cancelled", "future", "ended"):
            assert _transactions(session_factory, customer) == []

    def test_enrollment_started_earlier_today_in_ist_is_rewarded(
        self, distributor, session_factory, clock, create_plan, create_enrollment,
    ):
        ist = timezone(timedelta(hours=5, minutes=30))
        # The clock reads 10:00 IST; the enrollment began at 09:00 IST
        enrollment_id = create_enrollment(
            create_plan("10.00", "100.00"), start_date=datetime(2024, 1, 3, 9, 0, tzinfo=ist),
        )

        result = distributor.run()

        assert result.outcome == RunOutcome.SUCCEEDED
        assert result.rewarded_count == 1
        assert _current_amount(session_factory, enrollment_id) == Decimal("10.00")

    def test_enrollment_paused_after_selection_is_skipped(
        self, distributor, session_factory, create_plan, create_enrollment, monkeypatch,
    ):
        enrollment_id = create_enrollment(create_plan(), status=EnrollmentStatus.PAUSED)
        with session_scope(session_factory) as session:
            stale = EnrollmentSelector(session).get(enrollment_id)
        monkeypatch.setattr(
            EnrollmentSelector, "active_enrollments", lambda self, as_of: [stale],
        )

        result = distributor.run()

        assert result.outcome == RunOutcome.SUCCEEDED
        assert result.ineligible_count == 1
        assert _transactions(session_factory) == []


# =============================================================================
# Failure, retry and cancellation
# =============================================================================


class TestFailureAndRetry:

    def _seed_two(self, clock, create_plan, create_enrollment):
        plan_id = create_plan("10.00", "100.00")
        now = clock.now_utc()
        first = create_enrollment(
            plan_id, customer_id="cust-001", start_date=now - timedelta(days=10),
        )
        second = create_enrollment(
            plan_id, customer_id="cust-boom", start_date=now - timedelta(days=5),
        )
        return first, second

    def test_failure_marks_row_failed_and_keeps_earlier_rewards(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
        monkeypatch, captured_logs,
    ):
        first, second = self._seed_two(clock, create_plan, create_enrollment)
        original = LedgerService.credit_wallet

        def credit_or_fail(self, customer_id, wallet_type, amount):
            if customer_id == "cust-boom":
                raise RuntimeError("wallet store unavailable")
            return original(self, customer_id, wallet_type, amount)

        monkeypatch.setattr(LedgerService, "credit_wallet", credit_or_fail)

        result = distributor.run()

        assert result.outcome == RunOutcome.FAILED
        assert result.error_message == "wallet store unavailable"
        assert result.rewarded_count == 1
        assert result.processed_count == 1
        assert _current_amount(session_factory, first) == Decimal("10.00")
        assert _current_amount(session_factory, second) == Decimal("0")

        row = _job_row(session_factory, clock, actor_id)
        assert row.status == JobExecutionStatus.FAILED
        assert row.error_message == "wallet store unavailable"
        failed_logs = [r for r in captured_logs() if r["message"] == "distribution_failed"]
        assert failed_logs and failed_logs[0]["exc_type"] == "RuntimeError"

    def test_retry_after_failure_does_not_recredit(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
        monkeypatch,
    ):
        first, second = self._seed_two(clock, create_plan, create_enrollment)
        original = LedgerService.credit_wallet

        def credit_or_fail(self, customer_id, wallet_type, amount):
            if customer_id == "cust-boom":
                raise RuntimeError("wallet store unavailable")
            return original(self, customer_id, wallet_type, amount)

        monkeypatch.setattr(LedgerService, "credit_wallet", credit_or_fail)
        assert distributor.run().outcome == RunOutcome.FAILED

        monkeypatch.setattr(LedgerService, "credit_wallet", original)
        clock.advance(600)
        retry = distributor.run()

        assert retry.outcome == RunOutcome.SUCCEEDED
        assert retry.already_rewarded_count == 1
        assert retry.rewarded_count == 1
        assert len(_transactions(session_factory, "cust-001")) == 1
        assert _balance(session_factory, "cust-001") == Decimal("10.00")
        assert _current_amount(session_factory, first) == Decimal("10.00")
        assert _current_amount(session_factory, second) == Decimal("10.00")

        row = _job_row(session_factory, clock, actor_id)
        assert row.status == JobExecutionStatus.SUCCESS
        assert row.attempt == 2

    def test_concurrent_marker_counts_as_already_rewarded(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
        monkeypatch,
    ):
        enrollment_id = create_enrollment(create_plan("10.00", "100.00"))
        # Another replica already wrote today's reward row
        with session_scope(session_factory) as session:
            ledger = LedgerService(session, actor_id, clock)
            credit = ledger.credit_wallet("cust-001", SHOPPING_WALLET, Decimal("10.00"))
            ledger.append_transaction(
                TransactionEntry(
                    wallet_id=credit.wallet_id,
                    customer_id="cust-001",
                    transaction_type=TransactionType.CREDIT,
                    reason=TransactionReason.REWARD,
                    amount=Decimal("10.00"),
                    balance_before=credit.balance_before,
                    balance_after=credit.balance_after,
                    subscription_id=enrollment_id,
                    reward_date=WEDNESDAY,
                )
            )
        monkeypatch.setattr(LedgerService, "has_reward", lambda self, *args: False)

        result = distributor.run()

        assert result.outcome == RunOutcome.SUCCEEDED
        assert result.already_rewarded_count == 1
        assert result.rewarded_count == 0
        # The losing credit rolled back with its transaction
        assert _balance(session_factory) == Decimal("10.00")
        assert len(_transactions(session_factory)) == 1

    def test_enrollment_whose_commit_fails_is_not_counted(
        self, distributor, create_plan, create_enrollment, monkeypatch,
    ):
        create_enrollment(create_plan("10.00", "100.00"))
        armed = []
        original_commit = Session.commit

        def saturated(plan, current):
            armed.append(True)
            return None

        def commit(self):
            if armed:
                armed.clear()
                raise RuntimeError("commit lost")
            return original_commit(self)

        monkeypatch.setattr("rewards_batch.services.distributor.compute_reward", saturated)
        monkeypatch.setattr(Session, "commit", commit)

        result = distributor.run()

        assert result.outcome == RunOutcome.FAILED
        assert result.error_message == "commit lost"
        assert result.processed_count == 0
        assert result.saturated_count == 0

    def test_progress_invariant_violation_fails_run(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
        monkeypatch,
    ):
        create_enrollment(create_plan("10.00", "100.00"))
        monkeypatch.setattr(
            "rewards_batch.services.distributor.compute_reward",
            lambda plan, current: Decimal("500"),
        )

        result = distributor.run()

        assert result.outcome == RunOutcome.FAILED
        assert "past target" in result.error_message
        # Credit, ledger row and progress roll back together
        assert _balance(session_factory) is None
        assert _transactions(session_factory) == []


class TestCancellation:

    def test_stop_event_cancels_and_allows_rerun(
        self, distributor, session_factory, clock, actor_id, create_plan, create_enrollment,
    ):
        create_enrollment(create_plan())
        stop = threading.Event()
        stop.set()

        cancelled = distributor.run(stop_event=stop)

        assert cancelled.outcome == RunOutcome.CANCELLED
        assert cancelled.outcome.is_failure
        assert cancelled.processed_count == 0
        row = _job_row(session_factory, clock, actor_id)
        assert row.status == JobExecutionStatus.CANCELLED
        assert "stop requested" in row.error_message

        rerun = distributor.run()
        assert rerun.outcome == RunOutcome.SUCCEEDED
        assert rerun.rewarded_count == 1

    def test_deadline_cancels_between_enrollments(
        self, distributor, session_factory, clock, create_plan, create_enrollment,
    ):
        plan_id = create_plan()
        create_enrollment(plan_id, customer_id="a")
        create_enrollment(plan_id, customer_id="b")

        result = distributor.run(deadline=clock.now())

        assert result.outcome == RunOutcome.CANCELLED
        assert result.processed_count == 0
        assert _transactions(session_factory, "a") == []

    def test_max_run_seconds_sets_default_deadline(
        self, session_factory, clock, actor_id, create_plan, create_enrollment, monkeypatch,
    ):
        plan_id = create_plan()
        create_enrollment(plan_id, customer_id="a", start_date=clock.now_utc() - timedelta(days=2))
        create_enrollment(plan_id, customer_id="b", start_date=clock.now_utc() - timedelta(days=1))
        distributor = RewardDistributor(
            session_factory, clock=clock, actor_id=actor_id, max_run_seconds=60,
        )
        original = LedgerService.credit_wallet

        def slow_credit(self, *args):
            clock.advance(120)
            return original(self, *args)

        monkeypatch.setattr(LedgerService, "credit_wallet", slow_credit)

        result = distributor.run()

        assert result.outcome == RunOutcome.CANCELLED
        assert result.processed_count == 1
        assert result.rewarded_count == 1
        assert len(_transactions(session_factory, "a")) == 1
        assert _transactions(session_factory, "b") == []


# =============================================================================
# Logging
# =============================================================================


def test_run_logs_carry_job_and_enrollment_context(
    distributor, captured_logs, create_plan, create_enrollment,
):
    enrollment_id = create_enrollment(create_plan())

    result = distributor.run()

    logs = captured_logs()
    rewarded = [r for r in logs if r["message"] == "enrollment_rewarded"]
    assert len(rewarded) == 1
    assert rewarded[0]["enrollment_id"] == str(enrollment_id)
    assert rewarded[0]["job_execution_id"] == str(result.job_execution_id)
    assert rewarded[0]["customer_id"] == "cust-001"
    completed = [r for r in logs if r["message"] == "distribution_completed"]
    assert completed and completed[0]["rewarded"] == 1
