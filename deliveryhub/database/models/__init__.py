"""
Database models package initialization.

This module exports all database models for SQLAlchemy and Alembic auto-generation.
Models are imported here to ensure they are registered with the Base metadata
for proper migration generation and relationship resolution.
"""

from deliveryhub.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from deliveryhub.database.models.order import Order, OrderStatusHistory
from deliveryhub.database.models.user import User

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "Order",
    "OrderStatusHistory",
]
