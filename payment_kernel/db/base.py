"""
Module: payment_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map that
    keeps money in integer minor units, and the TrackedBase mixin for
    mutable operational records (contracts, cycles).
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, messaging/ or outer
    packages.

Invariants enforced:
    - UUID primary keys (uuid4), stored as String(36) for portability between
      PostgreSQL and the SQLite test backend.
    - int maps to BigInteger: minor-unit amounts never overflow and never
      pass through a floating-point column type.

Audit relevance:
    Append-only records (ingestions, chain records, snapshots) carry their
    own clock-sourced timestamps.  TrackedBase's created_at/updated_at are
    operational metadata for the mutable remittance records.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as String(36).

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all payment kernel models.

    Guarantees:
        - id is a uuid4 UUID stored as String(36).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger (minor units, sequences).
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base for mutable operational records.

    Guarantees:
        - created_at is set by the database on INSERT.
        - updated_at auto-updates on every UPDATE.
        - created_by names the actor (user id or system component).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="system",
    )
