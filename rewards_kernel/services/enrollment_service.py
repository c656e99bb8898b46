"""
EnrollmentService -- locked reads and progress updates for enrollments.

Responsibility:
    The Enrollment Store write path used by the distribution runner.
    ``lock`` re-reads one enrollment under a row lock so that its progress
    cannot change between computing a reward and applying it;
    ``apply_reward`` increments progress and re-checks the target bound.

Architecture position:
    Kernel > Services.  Imports from models/ and domain/ only.

Invariants enforced:
    0 <= current_amount <= plan.target_amount after every update.

Failure modes:
    - EnrollmentNotFoundError if the enrollment vanished between selection
      and lock.
    - RewardInvariantError if the increment would overshoot the target.
      The caller's transaction must be rolled back.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from rewards_kernel.db.types import to_money
from rewards_kernel.exceptions import EnrollmentNotFoundError, RewardInvariantError
from rewards_kernel.logging_config import get_logger
from rewards_kernel.models.subscription import EnrollmentModel
from rewards_kernel.services.base import BaseService

logger = get_logger("services.enrollment")


class EnrollmentService(BaseService):
    """Row-locked enrollment progress updates."""

    def lock(self, enrollment_id: UUID) -> EnrollmentModel:
        """SELECT ... FOR UPDATE on one enrollment, plan eagerly loaded.

        The plan row is not locked; plans are read-only to this job.
        """
        model = self.session.execute(
            select(EnrollmentModel)
            .options(joinedload(EnrollmentModel.plan))
            .where(EnrollmentModel.id == enrollment_id)
            .with_for_update(of=EnrollmentModel)
        ).scalar_one_or_none()

        if model is None:
            raise EnrollmentNotFoundError(str(enrollment_id))
        return model

    def apply_reward(self, enrollment: EnrollmentModel, reward: Decimal) -> Decimal:
        """Add ``reward`` to the locked enrollment's progress.

        Returns:
            The new current_amount.
        """
        current = to_money(enrollment.current_amount)
        target = to_money(enrollment.plan.target_amount)
        new_amount = current + reward

        if reward <= 0 or new_amount > target:
            raise RewardInvariantError(str(enrollment.id), current, reward, target)

        enrollment.current_amount = new_amount
        enrollment.updated_at = self.clock.now_utc()
        enrollment.updated_by_id = self.actor_id
        self.session.flush()

        logger.debug(
            "enrollment_progress_updated",
            extra={
                "enrollment_id": str(enrollment.id),
                "current_amount": str(new_amount),
                "target_amount": str(target),
            },
        )
        return new_amount
