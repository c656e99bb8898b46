"""
Declarative bases shared by every rewards model.

Column conventions live here so plans, enrollments, wallets, ledger rows and
job executions all agree on them:

    Decimal   -> Numeric(38, 9)   reward amounts, balances; never float
    datetime  -> UTCDateTime      aware in, aware UTC out; naive values refused
    date      -> Date             reward days keyed in the distribution zone
    UUID      -> String(36)       portable between SQLite and PostgreSQL

Nothing in this module imports from models/ or services/.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """Stores a UUID as its 36-character text form and reads it back as UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """
    Aware timestamp stored as UTC wall time on every backend.

    Bind converts to UTC and refuses naive values.  Results come back
    aware in UTC even where the driver (SQLite) returns them naive.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime cannot be stored: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Root of the model hierarchy: uuid4 primary key plus the type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        date: Date,
        UUID: UUIDString(),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who/when audit columns.

    created_at and created_by_id are written once on insert.  updated_at is
    bumped by the server on every ORM update; updated_by_id stays NULL until
    someone other than the creator touches the row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
