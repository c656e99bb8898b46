"""
Pytest fixtures for the rewards test suite.

Provides:
- A throwaway SQLite database file per test (tmp_path) with all tables
- A DeterministicClock pinned to a Wednesday in Asia/Kolkata
- Seed helpers for plans and enrollments
- Structured log capture
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from rewards_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    session_scope,
)
from rewards_kernel.db.immutability import register_immutability_listeners
from rewards_kernel.domain.clock import DeterministicClock
from rewards_kernel.domain.dtos import EnrollmentStatus
from rewards_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rewards_kernel.models.subscription import EnrollmentModel, SubscriptionPlanModel

import rewards_batch.models  # noqa: F401
from rewards_batch.services.distributor import RewardDistributor

# Actor recorded on every row written by tests
TEST_ACTOR_ID = uuid4()

# Wednesday 2024-01-03 10:00 in Asia/Kolkata
WEDNESDAY_IST = datetime(2024, 1, 3, 4, 30, tzinfo=timezone.utc)

ENROLLMENT_START = datetime(2023, 12, 1, tzinfo=timezone.utc)
ENROLLMENT_END = datetime(2024, 12, 31, 23, 59, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture rewards_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, distributor):
            distributor.run()
            logs = captured_logs()
            assert any(r["message"] == "distribution_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rewards_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'rewards.db'}"


@pytest.fixture
def engine(database_url):
    eng = create_engine_from_url(database_url)
    create_tables(eng)
    register_immutability_listeners()
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def clock():
    return DeterministicClock(WEDNESDAY_IST)


# =============================================================================
# Seed helpers
# =============================================================================


@pytest.fixture
def create_plan(session_factory):
    """Factory: create_plan(reward_increment="10.00", target_amount="100.00") -> plan id."""

    def _create(reward_increment="10.00", target_amount="100.00", name="Gold Saver"):
        with session_scope(session_factory) as sess:
            plan = SubscriptionPlanModel(
                name=name,
                reward_increment=Decimal(reward_increment),
                target_amount=Decimal(target_amount),
                created_by_id=TEST_ACTOR_ID,
            )
            sess.add(plan)
            sess.flush()
            return plan.id

    return _create


@pytest.fixture
def create_enrollment(session_factory):
    """Factory: create_enrollment(plan_id, customer_id=..., ...) -> enrollment id."""

    def _create(
        plan_id,
        customer_id="cust-001",
        current_amount="0",
        status=EnrollmentStatus.ACTIVE,
        start_date=ENROLLMENT_START,
        end_date=ENROLLMENT_END,
    ):
        with session_scope(session_factory) as sess:
            enrollment = EnrollmentModel(
                customer_id=customer_id,
                plan_id=plan_id,
                status=EnrollmentStatus(status).value,
                start_date=start_date,
                end_date=end_date,
                current_amount=Decimal(current_amount),
                created_by_id=TEST_ACTOR_ID,
            )
            sess.add(enrollment)
            sess.flush()
            return enrollment.id

    return _create


@pytest.fixture
def distributor(session_factory, clock):
    return RewardDistributor(
        session_factory=session_factory,
        clock=clock,
        actor_id=TEST_ACTOR_ID,
    )
