"""
Declarative base and shared columns for DeliveryHub tables.

Column types stay dialect-neutral (``Uuid``, timezone-aware ``DateTime``)
so the same models run on PostgreSQL in production and SQLite in tests.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Store enum members by value (``"in_transit"``), not by name."""
    return [member.value for member in enum_cls]


class Base(AsyncAttrs, DeclarativeBase):
    __abstract__ = True

    def __repr__(self) -> str:
        keys = ", ".join(
            f"{column.name}={getattr(self, column.name, None)!r}"
            for column in self.__table__.primary_key.columns
        )
        return f"<{type(self).__name__}({keys})>"


class UUIDMixin:
    """Random UUID primary key, generated client-side."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    """
    ``created_at`` and ``updated_at`` columns.

    Both are filled in Python so a flushed instance carries them without a
    refresh; the server default only covers rows inserted outside the ORM.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
            server_default=func.now(),
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """Abstract parent of every DeliveryHub table."""

    __abstract__ = True
