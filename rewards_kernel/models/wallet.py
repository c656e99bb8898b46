"""
Module: rewards_kernel.models.wallet
Responsibility: ORM persistence for wallets (per-customer balance buckets) and
    their append-only transaction history.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - One wallet per (customer_id, type): UNIQUE constraint uq_wallet_owner_type.
    - A wallet's balance equals the sum of its CREDIT amounts minus the sum
      of its DEBIT amounts.  The balance is a cache; the transactions are the
      record (verified by LedgerSelector.verify_wallet).
    - At most one transaction per (subscription_id, reward_date): UNIQUE
      constraint uq_wallet_txn_subscription_day.  This is the per-enrollment,
      per-day reward marker; NULLs (non-reward rows) never collide.
    - Transactions are immutable once written (ORM listeners in
      db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate wallet key or a second reward for the
      same enrollment and day.
    - ImmutabilityViolationError on UPDATE/DELETE of a transaction row.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rewards_kernel.db.base import TrackedBase, UUIDString
from rewards_kernel.db.types import to_money
from rewards_kernel.domain.dtos import (
    TransactionReason,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)


class WalletModel(TrackedBase):
    """Running balance for one customer and wallet type."""

    __tablename__ = "wallets"

    __table_args__ = (
        UniqueConstraint("customer_id", "type", name="uq_wallet_owner_type"),
        Index("idx_wallet_customer", "customer_id"),
    )

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    transactions: Mapped[list["WalletTransactionModel"]] = relationship(
        "WalletTransactionModel",
        back_populates="wallet",
        order_by="WalletTransactionModel.created_at",
    )

    def __repr__(self) -> str:
        return f"<Wallet {self.customer_id}/{self.type}: {self.balance}>"


class WalletTransactionModel(TrackedBase):
    """Immutable ledger row explaining one wallet balance change."""

    __tablename__ = "wallet_transactions"

    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "reward_date", name="uq_wallet_txn_subscription_day",
        ),
        CheckConstraint("amount > 0", name="ck_wallet_txn_amount_positive"),
        Index("idx_wallet_txn_wallet", "wallet_id"),
        Index("idx_wallet_txn_customer", "customer_id"),
        Index("idx_wallet_txn_subscription", "subscription_id"),
    )

    wallet_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("wallets.id"),
        nullable=False,
    )
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    # Non-owning back-reference to the enrollment that triggered a reward
    subscription_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reward_date: Mapped[date | None] = mapped_column(nullable=True)

    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True,
    )

    wallet: Mapped["WalletModel"] = relationship(
        "WalletModel",
        back_populates="transactions",
    )

    def to_dto(self) -> TransactionRecord:
        return TransactionRecord(
            transaction_id=self.id,
            wallet_id=self.wallet_id,
            customer_id=self.customer_id,
            transaction_type=TransactionType(self.type),
            reason=TransactionReason(self.reason),
            status=TransactionStatus(self.status),
            amount=to_money(self.amount),
            balance_before=to_money(self.balance_before),
            balance_after=to_money(self.balance_after),
            subscription_id=self.subscription_id,
            reward_date=self.reward_date,
            metadata=dict(self.details or {}),
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<WalletTransaction {self.type} {self.amount} ({self.reason})>"
