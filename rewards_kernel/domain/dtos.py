"""
DTOs -- Pure domain data transfer objects for the ledger and enrollment stores.

Responsibility:
    Immutable values crossing the persistence boundary: plan rules and
    enrollment snapshots (read side), wallet credit snapshots and ledger
    entries (write side).  Services accept and return these instead of ORM
    instances.

Architecture position:
    Kernel > Domain -- zero I/O.

Failure modes:
    - ValueError on a TransactionEntry with a non-positive amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class TransactionType(str, Enum):
    """Direction of a wallet transaction."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionReason(str, Enum):
    """Business reason recorded on a wallet transaction."""

    REWARD = "REWARD"
    PURCHASE = "PURCHASE"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle.  Only ACTIVE is read by the distribution job;
    the others are owned by the external enrollment flow."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


SHOPPING_WALLET = "SHOPPING"


@dataclass(frozen=True)
class PlanRules:
    """Reward rules shared by every enrollment on a plan."""

    plan_id: UUID
    reward_increment: Decimal
    target_amount: Decimal


@dataclass(frozen=True)
class EnrollmentSnapshot:
    """One enrollment joined with its plan, as read at a point in time."""

    enrollment_id: UUID
    customer_id: str
    status: EnrollmentStatus
    start_date: datetime
    end_date: datetime
    current_amount: Decimal
    plan: PlanRules


@dataclass(frozen=True)
class WalletCredit:
    """Before/after snapshot of one atomic balance change."""

    wallet_id: UUID
    balance_before: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class TransactionEntry:
    """Input for one append-only wallet transaction row."""

    wallet_id: UUID
    customer_id: str
    transaction_type: TransactionType
    reason: TransactionReason
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    status: TransactionStatus = TransactionStatus.SUCCESS
    subscription_id: UUID | None = None
    reward_date: date | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Transaction amount must be positive, got {self.amount}")


@dataclass(frozen=True)
class TransactionRecord:
    """A persisted wallet transaction."""

    transaction_id: UUID
    wallet_id: UUID
    customer_id: str
    transaction_type: TransactionType
    reason: TransactionReason
    status: TransactionStatus
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    subscription_id: UUID | None
    reward_date: date | None
    metadata: dict[str, Any]
    created_at: datetime | None
