"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session-handling contract for every service in
    the kernel layer.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    Transaction boundaries belong to the caller.  The distribution runner
    opens one transaction per enrollment so that a wallet credit, its
    ledger row and the enrollment progress update commit or roll back
    together.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session

from rewards_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only query methods -- those belong in
          ``rewards_kernel/selectors/``.
    """

    def __init__(self, session: Session, actor_id: UUID, clock: Clock | None = None):
        self.session = session
        self.actor_id = actor_id
        self.clock = clock or SystemClock()
