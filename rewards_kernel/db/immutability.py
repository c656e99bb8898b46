"""
ORM-level immutability enforcement for the wallet ledger.

Wallet transactions are append-only: a balance change is explained by
exactly one row that is never edited or removed afterwards.  Corrections
are new rows.

SQLAlchemy fires mapper events before UPDATE/DELETE SQL reaches the
database; the listeners below raise ImmutabilityViolationError there, so
the flush aborts and nothing is written.

    session.flush()
         |
         v
    [before_update] --> _check_wallet_transaction_update() --> ImmutabilityViolationError
    [before_delete] --> _check_wallet_transaction_delete() --> ImmutabilityViolationError

Only ORM unit-of-work changes are intercepted.  Bulk ``update()`` /
``delete()`` statements bypass mapper events; nothing in this repository
issues them against wallet_transactions.

Usage:

    from rewards_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from rewards_kernel.exceptions import ImmutabilityViolationError
from rewards_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_wallet_transaction_update(mapper, connection, target):
    """Wallet transactions are immutable from creation."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "WalletTransaction",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="WalletTransaction",
        entity_id=str(target.id),
        reason="Wallet transactions are immutable and cannot be modified",
    )


def _check_wallet_transaction_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "WalletTransaction",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="WalletTransaction",
        entity_id=str(target.id),
        reason="Wallet transactions cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register the append-only listeners (idempotent).

    Call after models are imported and before any database writes.
    """
    from rewards_kernel.models.wallet import WalletTransactionModel

    for event_name, listener_fn in (
        ("before_update", _check_wallet_transaction_update),
        ("before_delete", _check_wallet_transaction_delete),
    ):
        if not event.contains(WalletTransactionModel, event_name, listener_fn):
            event.listen(WalletTransactionModel, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately violate the rule.
    """
    from rewards_kernel.models.wallet import WalletTransactionModel

    _safe_remove_listener(
        WalletTransactionModel, "before_update", _check_wallet_transaction_update,
    )
    _safe_remove_listener(
        WalletTransactionModel, "before_delete", _check_wallet_transaction_delete,
    )
