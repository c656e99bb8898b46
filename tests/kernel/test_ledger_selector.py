"""Tests for LedgerSelector reads and wallet reconciliation."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import update

from rewards_kernel.domain.dtos import (
    SHOPPING_WALLET,
    TransactionEntry,
    TransactionReason,
    TransactionType,
)
from rewards_kernel.models.wallet import WalletModel
from rewards_kernel.selectors.ledger_selector import LedgerSelector
from rewards_kernel.services.ledger_service import LedgerService


def _post(ledger, amount, transaction_type=TransactionType.CREDIT, subscription_id=None,
          reward_date=None, customer_id="cust-001"):
    if transaction_type == TransactionType.CREDIT:
        change = ledger.credit_wallet(customer_id, SHOPPING_WALLET, amount)
        reason = TransactionReason.REWARD if subscription_id else TransactionReason.ADJUSTMENT
    else:
        change = ledger.debit_wallet(customer_id, SHOPPING_WALLET, amount)
        reason = TransactionReason.PURCHASE
    return ledger.append_transaction(
        TransactionEntry(
            wallet_id=change.wallet_id,
            customer_id=customer_id,
            transaction_type=transaction_type,
            reason=reason,
            amount=amount,
            balance_before=change.balance_before,
            balance_after=change.balance_after,
            subscription_id=subscription_id,
            reward_date=reward_date,
        )
    )


class TestLedgerSelector:

    def test_get_wallet(self, session, actor_id, clock):
        ledger = LedgerService(session, actor_id, clock)
        _post(ledger, Decimal("10"))

        wallet = LedgerSelector(session).get_wallet("cust-001", SHOPPING_WALLET)

        assert wallet.balance == Decimal("10")
        assert LedgerSelector(session).get_wallet("cust-001", "CASH") is None

    def test_ledger_balance_nets_debits(self, session, actor_id, clock):
        ledger = LedgerService(session, actor_id, clock)
        record = _post(ledger, Decimal("10"))
        _post(ledger, Decimal("3"), TransactionType.DEBIT)

        total, count = LedgerSelector(session).ledger_balance(record.wallet_id)

        assert total == Decimal("7")
        assert count == 2

    def test_transactions_for_subscription(self, session, actor_id, clock):
        ledger = LedgerService(session, actor_id, clock)
        subscription_id = uuid4()
        _post(ledger, Decimal("10"), subscription_id=subscription_id, reward_date=date(2024, 1, 3))
        _post(ledger, Decimal("10"), subscription_id=subscription_id, reward_date=date(2024, 1, 4))
        _post(ledger, Decimal("1"))

        selector = LedgerSelector(session)
        assert len(selector.transactions_for_subscription(subscription_id)) == 2
        one_day = selector.transactions_for_subscription(subscription_id, date(2024, 1, 4))
        assert [r.reward_date for r in one_day] == [date(2024, 1, 4)]

    def test_transactions_for_wallet(self, session, actor_id, clock):
        ledger = LedgerService(session, actor_id, clock)
        first = _post(ledger, Decimal("10"))
        _post(ledger, Decimal("5"))

        rows = LedgerSelector(session).transactions_for_wallet(first.wallet_id)

        assert [r.balance_after for r in rows] == [Decimal("10"), Decimal("15")]


class TestReconciliation:

    def test_consistent_wallet(self, session, actor_id, clock):
        ledger = LedgerService(session, actor_id, clock)
        record = _post(ledger, Decimal("10"))
        _post(ledger, Decimal("4"), TransactionType.DEBIT)

        report = LedgerSelector(session).verify_wallet(record.wallet_id)

        assert report.is_consistent
        assert report.stored_balance == Decimal("6")
        assert report.transaction_count == 2

    def test_drift_reported(self, session, actor_id, clock):
        ledger = LedgerService(session, actor_id, clock)
        record = _post(ledger, Decimal("10"))
        _post(ledger, Decimal("1"), customer_id="cust-002")
        session.execute(
            update(WalletModel)
            .where(WalletModel.id == record.wallet_id)
            .values(balance=Decimal("11"))
        )
        session.expire_all()

        reports = LedgerSelector(session).verify_all()

        by_customer = {r.customer_id: r for r in reports}
        assert not by_customer["cust-001"].is_consistent
        assert by_customer["cust-001"].difference == Decimal("1")
        assert by_customer["cust-002"].is_consistent

    def test_unknown_wallet(self, session):
        assert LedgerSelector(session).verify_wallet(uuid4()) is None
