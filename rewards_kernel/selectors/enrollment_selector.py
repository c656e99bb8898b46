"""
Module: rewards_kernel.selectors.enrollment_selector
Responsibility: Read-only queries over enrollments and their plans.
Architecture position: Kernel > Selectors.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from rewards_kernel.domain.dtos import EnrollmentSnapshot, EnrollmentStatus
from rewards_kernel.models.subscription import EnrollmentModel
from rewards_kernel.selectors.base import BaseSelector


class EnrollmentSelector(BaseSelector[EnrollmentModel]):
    """Enrollment reads for the distribution job and operators."""

    def active_enrollments(self, as_of: datetime) -> list[EnrollmentSnapshot]:
        """
        Enrollments eligible for a run at ``as_of``.

        Eligible means status ACTIVE and start_date <= as_of <= end_date
        (both bounds inclusive).  Ordered by start_date then id so runs
        visit enrollments in a stable order.
        """
        rows = self.session.execute(
            select(EnrollmentModel)
            .options(joinedload(EnrollmentModel.plan))
            .where(
                EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
                EnrollmentModel.start_date <= as_of,
                EnrollmentModel.end_date >= as_of,
            )
            .order_by(EnrollmentModel.start_date, EnrollmentModel.id)
        ).scalars().all()
        return [row.to_snapshot() for row in rows]

    def get(self, enrollment_id: UUID) -> EnrollmentSnapshot | None:
        model = self.session.execute(
            select(EnrollmentModel)
            .options(joinedload(EnrollmentModel.plan))
            .where(EnrollmentModel.id == enrollment_id)
        ).scalar_one_or_none()
        return model.to_snapshot() if model is not None else None
