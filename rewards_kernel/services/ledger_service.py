"""
LedgerService -- atomic wallet balance changes and append-only ledger rows.

Responsibility:
    The Ledger Store write path.  ``credit_wallet`` / ``debit_wallet``
    change a wallet balance in one database-computed statement and return
    the before/after snapshot; ``append_transaction`` records the immutable
    row explaining that change.

Architecture position:
    Kernel > Services.  Imports from db/, models/, domain/ only.

Invariants enforced:
    - No lost updates: the new balance is computed by the database
      (``SET balance = balance + :amount ... RETURNING``), never read,
      modified in Python and written back.
    - Wallet creation races (two first credits for the same customer and
      type) are resolved by the UNIQUE(customer_id, type) constraint: the
      loser rolls back its SAVEPOINT and retries the increment.
    - Every appended row satisfies balance_after - balance_before == amount
      for CREDIT (== -amount for DEBIT).
    - At most one REWARD row per (subscription_id, reward_date).

Failure modes:
    - InvalidWalletKeyError: empty customer id or wallet type.
    - InvalidAmountError: non-Decimal or non-positive amount.
    - InsufficientBalanceError: debit larger than the wallet balance.
    - LedgerConsistencyError: entry snapshot does not match its amount.
    - DuplicateRewardError: second reward row for an enrollment and day.
      The session must be rolled back by the caller after this error.
    - Any other IntegrityError propagates unchanged; nothing is retried.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from rewards_kernel.db.types import ZERO, to_money
from rewards_kernel.domain.dtos import (
    TransactionEntry,
    TransactionRecord,
    TransactionType,
    WalletCredit,
)
from rewards_kernel.exceptions import (
    DuplicateRewardError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidWalletKeyError,
    LedgerConsistencyError,
)
from rewards_kernel.logging_config import get_logger
from rewards_kernel.models.wallet import WalletModel, WalletTransactionModel
from rewards_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class LedgerService(BaseService):
    """
    Wallet balance mutations and ledger appends.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the caller decides whether
          a credit and its ledger row are one unit of work.
    """

    def credit_wallet(
        self, customer_id: str, wallet_type: str, amount: Decimal,
    ) -> WalletCredit:
        """Atomically add ``amount`` to the wallet, creating it if absent.

        Returns:
            WalletCredit with the wallet id and the balance before and after
            this increment.
        """
        _check_wallet_key(customer_id, wallet_type)
        _check_amount(amount)

        result = self._increment(customer_id, wallet_type, amount)
        if result is None:
            result = self._create_with_balance(customer_id, wallet_type, amount)

        logger.debug(
            "wallet_credited",
            extra={
                "customer_id": customer_id,
                "wallet_type": wallet_type,
                "wallet_id": str(result.wallet_id),
                "amount": str(amount),
                "balance_after": str(result.balance_after),
            },
        )
        return result

    def debit_wallet(
        self, customer_id: str, wallet_type: str, amount: Decimal,
    ) -> WalletCredit:
        """Atomically subtract ``amount`` if the balance covers it.

        Raises:
            InsufficientBalanceError: wallet missing or balance < amount.
        """
        _check_wallet_key(customer_id, wallet_type)
        _check_amount(amount)

        row = self.session.execute(
            update(WalletModel)
            .where(
                WalletModel.customer_id == customer_id,
                WalletModel.type == wallet_type,
                WalletModel.balance >= amount,
            )
            .values(
                balance=WalletModel.balance - amount,
                updated_at=self.clock.now_utc(),
                updated_by_id=self.actor_id,
            )
            .returning(WalletModel.id, WalletModel.balance)
        ).one_or_none()

        if row is None:
            raise InsufficientBalanceError(customer_id, wallet_type, amount)

        balance_after = to_money(row.balance)
        return WalletCredit(
            wallet_id=row.id,
            balance_before=balance_after + amount,
            balance_after=balance_after,
        )

    def append_transaction(self, entry: TransactionEntry) -> TransactionRecord:
        """Insert one immutable wallet transaction row."""
        expected_delta = (
            entry.amount
            if entry.transaction_type == TransactionType.CREDIT
            else -entry.amount
        )
        if entry.balance_after - entry.balance_before != expected_delta:
            raise LedgerConsistencyError(
                entry.balance_before,
                entry.balance_after,
                entry.amount,
                entry.transaction_type.value,
            )

        model = WalletTransactionModel(
            wallet_id=entry.wallet_id,
            customer_id=entry.customer_id,
            type=entry.transaction_type.value,
            reason=entry.reason.value,
            status=entry.status.value,
            amount=entry.amount,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            subscription_id=entry.subscription_id,
            reward_date=entry.reward_date,
            details=dict(entry.metadata),
            created_by_id=self.actor_id,
        )
        model.created_at = self.clock.now_utc()
        self.session.add(model)

        try:
            self.session.flush()
        except IntegrityError as exc:
            if entry.subscription_id is not None and entry.reward_date is not None:
                raise DuplicateRewardError(
                    str(entry.subscription_id), entry.reward_date,
                ) from exc
            raise

        return model.to_dto()

    def has_reward(self, subscription_id, reward_date: date) -> bool:
        """True if the enrollment already holds a ledger row for the date."""
        found = self.session.execute(
            select(WalletTransactionModel.id).where(
                WalletTransactionModel.subscription_id == subscription_id,
                WalletTransactionModel.reward_date == reward_date,
            )
        ).first()
        return found is not None

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _increment(
        self, customer_id: str, wallet_type: str, amount: Decimal,
    ) -> WalletCredit | None:
        row = self.session.execute(
            update(WalletModel)
            .where(
                WalletModel.customer_id == customer_id,
                WalletModel.type == wallet_type,
            )
            .values(
                balance=WalletModel.balance + amount,
                updated_at=self.clock.now_utc(),
                updated_by_id=self.actor_id,
            )
            .returning(WalletModel.id, WalletModel.balance)
        ).one_or_none()

        if row is None:
            return None

        balance_after = to_money(row.balance)
        return WalletCredit(
            wallet_id=row.id,
            balance_before=balance_after - amount,
            balance_after=balance_after,
        )

    def _create_with_balance(
        self, customer_id: str, wallet_type: str, amount: Decimal,
    ) -> WalletCredit:
        # SAVEPOINT so a lost creation race doesn't roll back the caller's work
        savepoint = self.session.begin_nested()
        try:
            now = self.clock.now_utc()
            wallet = WalletModel(
                customer_id=customer_id,
                type=wallet_type,
                balance=amount,
                created_by_id=self.actor_id,
            )
            wallet.created_at = now
            wallet.updated_at = now
            self.session.add(wallet)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                "wallet_create_race_retry",
                extra={"customer_id": customer_id, "wallet_type": wallet_type},
            )
            result = self._increment(customer_id, wallet_type, amount)
            if result is None:
                raise
            return result

        logger.info(
            "wallet_created",
            extra={
                "customer_id": customer_id,
                "wallet_type": wallet_type,
                "wallet_id": str(wallet.id),
            },
        )
        return WalletCredit(
            wallet_id=wallet.id,
            balance_before=ZERO,
            balance_after=amount,
        )


def _check_wallet_key(customer_id: str, wallet_type: str) -> None:
    if not customer_id or not str(customer_id).strip():
        raise InvalidWalletKeyError(customer_id, wallet_type)
    if not wallet_type or not str(wallet_type).strip():
        raise InvalidWalletKeyError(customer_id, wallet_type)


def _check_amount(amount: Decimal) -> None:
    if not isinstance(amount, Decimal):
        raise InvalidAmountError(amount, "must be a Decimal")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(amount, "must be positive")
