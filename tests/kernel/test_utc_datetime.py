"""
Tests for UTCDateTime -- the column type behind every datetime attribute.

SQLite returns naive values and keeps only the wall-clock digits it is
given, so these run against the per-test SQLite file.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import StatementError

from rewards_kernel.db.engine import session_scope
from rewards_kernel.domain.dtos import EnrollmentStatus
from rewards_kernel.models.subscription import EnrollmentModel
from rewards_kernel.selectors.enrollment_selector import EnrollmentSelector

IST = timezone(timedelta(hours=5, minutes=30))
AS_OF = datetime(2024, 1, 3, 4, 30, tzinfo=timezone.utc)  # 10:00 IST


def test_offset_value_reads_back_as_same_instant_in_utc(
    session_factory, create_plan, create_enrollment,
):
    start = datetime(2024, 1, 3, 9, 0, tzinfo=IST)
    enrollment_id = create_enrollment(create_plan(), start_date=start)

    with session_scope(session_factory) as session:
        stored = session.get(EnrollmentModel, enrollment_id)
        start_date, created_at = stored.start_date, stored.created_at

    assert start_date == start
    assert start_date.utcoffset() == timedelta(0)
    assert (start_date.hour, start_date.minute) == (3, 30)
    assert created_at.tzinfo is not None


def test_window_bounds_in_ist_compare_as_instants(
    session_factory, create_plan, create_enrollment,
):
    plan_id = create_plan()
    # 09:00 IST is an hour before AS_OF
    create_enrollment(
        plan_id, customer_id="started", start_date=datetime(2024, 1, 3, 9, 0, tzinfo=IST),
    )
    # 09:45 IST is fifteen minutes before AS_OF
    create_enrollment(
        plan_id,
        customer_id="ended",
        start_date=datetime(2024, 1, 1, tzinfo=IST),
        end_date=datetime(2024, 1, 3, 9, 45, tzinfo=IST),
    )

    with session_scope(session_factory) as session:
        eligible = EnrollmentSelector(session).active_enrollments(AS_OF)

    assert [snapshot.customer_id for snapshot in eligible] == ["started"]


def test_naive_datetime_refused(session_factory, create_plan, actor_id):
    plan_id = create_plan()

    with pytest.raises(StatementError) as exc_info:
        with session_scope(session_factory) as session:
            session.add(EnrollmentModel(
                customer_id="naive",
                plan_id=plan_id,
                status=EnrollmentStatus.ACTIVE.value,
                start_date=datetime(2024, 1, 3),
                end_date=datetime(2024, 2, 3, tzinfo=timezone.utc),
                current_amount=Decimal("0"),
                created_by_id=actor_id,
            ))

    assert isinstance(exc_info.value.orig, ValueError)
