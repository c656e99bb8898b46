"""
Module: rewards_kernel.selectors.ledger_selector
Responsibility: Read-only wallet and ledger queries, including the
    reconciliation check that a wallet's cached balance equals the net of
    its transactions.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    Reconciliation: balance == sum(CREDIT amounts) - sum(DEBIT amounts).
    verify_wallet() reports rather than raises so that an operator can see
    every drifting wallet in one pass.

Failure modes:
    - Returns None / empty lists / zero when no matching rows exist.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from rewards_kernel.db.types import ZERO, to_money
from rewards_kernel.domain.dtos import TransactionRecord, TransactionType
from rewards_kernel.models.wallet import WalletModel, WalletTransactionModel
from rewards_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class WalletView:
    """A wallet and its cached balance."""

    wallet_id: UUID
    customer_id: str
    wallet_type: str
    balance: Decimal


@dataclass(frozen=True)
class WalletReconciliation:
    """Cached balance vs. balance derived from the ledger."""

    wallet_id: UUID
    customer_id: str
    wallet_type: str
    stored_balance: Decimal
    ledger_balance: Decimal
    transaction_count: int

    @property
    def difference(self) -> Decimal:
        return self.stored_balance - self.ledger_balance

    @property
    def is_consistent(self) -> bool:
        return self.difference == 0


class LedgerSelector(BaseSelector[WalletTransactionModel]):
    """
    Selector for wallet and ledger queries.

    Contract:
        Transactions are returned oldest first.  All amounts are Decimal.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get_wallet(self, customer_id: str, wallet_type: str) -> WalletView | None:
        model = self.session.execute(
            select(WalletModel).where(
                WalletModel.customer_id == customer_id,
                WalletModel.type == wallet_type,
            )
        ).scalar_one_or_none()
        if model is None:
            return None
        return WalletView(
            wallet_id=model.id,
            customer_id=model.customer_id,
            wallet_type=model.type,
            balance=to_money(model.balance),
        )

    def transactions_for_wallet(self, wallet_id: UUID) -> list[TransactionRecord]:
        rows = self.session.execute(
            select(WalletTransactionModel)
            .where(WalletTransactionModel.wallet_id == wallet_id)
            .order_by(
                WalletTransactionModel.created_at,
                WalletTransactionModel.balance_before,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def transactions_for_subscription(
        self,
        subscription_id: UUID,
        reward_date: date | None = None,
    ) -> list[TransactionRecord]:
        """Reward rows written on behalf of one enrollment, optionally one day."""
        query = select(WalletTransactionModel).where(
            WalletTransactionModel.subscription_id == subscription_id,
        )
        if reward_date is not None:
            query = query.where(WalletTransactionModel.reward_date == reward_date)
        rows = self.session.execute(
            query.order_by(WalletTransactionModel.reward_date)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def ledger_balance(self, wallet_id: UUID) -> tuple[Decimal, int]:
        """
        Net balance derived from the ledger.

        Returns:
            Tuple of (sum of CREDIT minus sum of DEBIT, transaction count).
        """
        signed = case(
            (
                WalletTransactionModel.type == TransactionType.CREDIT.value,
                WalletTransactionModel.amount,
            ),
            else_=-WalletTransactionModel.amount,
        )
        total, count = self.session.execute(
            select(
                func.coalesce(func.sum(signed), 0),
                func.count(WalletTransactionModel.id),
            ).where(WalletTransactionModel.wallet_id == wallet_id)
        ).one()
        return to_money(total), int(count)

    def verify_wallet(self, wallet_id: UUID) -> WalletReconciliation | None:
        model = self.session.get(WalletModel, wallet_id)
        if model is None:
            return None
        return self._reconcile(model)

    def verify_all(self) -> list[WalletReconciliation]:
        """Reconcile every wallet, ordered by customer then type."""
        wallets = self.session.execute(
            select(WalletModel).order_by(WalletModel.customer_id, WalletModel.type)
        ).scalars().all()
        return [self._reconcile(model) for model in wallets]

    def _reconcile(self, model: WalletModel) -> WalletReconciliation:
        ledger_total, count = self.ledger_balance(model.id)
        return WalletReconciliation(
            wallet_id=model.id,
            customer_id=model.customer_id,
            wallet_type=model.type,
            stored_balance=to_money(model.balance) if model.balance is not None else ZERO,
            ledger_balance=ledger_total,
            transaction_count=count,
        )
