"""
Reward calculation.

Pure: no I/O, no clock.  Decimal arithmetic only, so 95.00 toward a target
of 100.00 yields exactly 5.00 whatever the plan increment.
"""

from __future__ import annotations

from decimal import Decimal

from rewards_kernel.domain.dtos import PlanRules


def remaining_amount(plan: PlanRules, current_amount: Decimal) -> Decimal:
    return plan.target_amount - current_amount


def compute_reward(plan: PlanRules, current_amount: Decimal) -> Decimal | None:
    """Return the day's reward, or None when the enrollment is saturated.

    Guarantees for a non-None result:
        reward > 0 and current_amount + reward <= plan.target_amount.
    """
    remaining = remaining_amount(plan, current_amount)
    if remaining <= 0:
        return None
    return min(plan.reward_increment, remaining)
