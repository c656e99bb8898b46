"""
Module: rewards_kernel.models.subscription
Responsibility: ORM persistence for subscription plans (reward rules) and
    customer enrollments (progress toward a plan's target).
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - reward_increment > 0 and target_amount > 0 on every plan.
    - 0 <= current_amount on every enrollment; the upper bound
      (current_amount <= plan.target_amount) spans two tables and is enforced
      by EnrollmentService.apply_reward.

Ownership:
    Plans and enrollments are created by the catalog and purchase flows.
    The distribution job only ever increments current_amount.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rewards_kernel.db.base import TrackedBase, UUIDString
from rewards_kernel.db.types import to_money
from rewards_kernel.domain.dtos import EnrollmentSnapshot, EnrollmentStatus, PlanRules


class SubscriptionPlanModel(TrackedBase):
    """Reward rules: a fixed increment per eligible run, up to a target."""

    __tablename__ = "subscription_plans"

    __table_args__ = (
        CheckConstraint("reward_increment > 0", name="ck_plan_increment_positive"),
        CheckConstraint("target_amount > 0", name="ck_plan_target_positive"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    reward_increment: Mapped[Decimal] = mapped_column(nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(nullable=False)

    enrollments: Mapped[list["EnrollmentModel"]] = relationship(
        "EnrollmentModel",
        back_populates="plan",
    )

    def to_rules(self) -> PlanRules:
        return PlanRules(
            plan_id=self.id,
            reward_increment=to_money(self.reward_increment),
            target_amount=to_money(self.target_amount),
        )


class EnrollmentModel(TrackedBase):
    """One customer's participation in a plan."""

    __tablename__ = "enrollments"

    __table_args__ = (
        CheckConstraint("current_amount >= 0", name="ck_enrollment_amount_non_negative"),
        Index("idx_enrollment_status_window", "status", "start_date", "end_date"),
        Index("idx_enrollment_customer", "customer_id"),
    )

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    plan_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("subscription_plans.id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value,
    )
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    plan: Mapped["SubscriptionPlanModel"] = relationship(
        "SubscriptionPlanModel",
        back_populates="enrollments",
    )

    def to_snapshot(self) -> EnrollmentSnapshot:
        return EnrollmentSnapshot(
            enrollment_id=self.id,
            customer_id=self.customer_id,
            status=EnrollmentStatus(self.status),
            start_date=self.start_date,
            end_date=self.end_date,
            current_amount=to_money(self.current_amount),
            plan=self.plan.to_rules(),
        )
