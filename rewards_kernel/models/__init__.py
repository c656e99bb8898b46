"""ORM models for the rewards kernel."""

from rewards_kernel.models.subscription import EnrollmentModel, SubscriptionPlanModel
from rewards_kernel.models.wallet import WalletModel, WalletTransactionModel

__all__ = [
    "EnrollmentModel",
    "SubscriptionPlanModel",
    "WalletModel",
    "WalletTransactionModel",
]
