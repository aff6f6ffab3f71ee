"""
User model with role and delivery availability.

This module defines the User model shared by customers, delivery personnel
and admins. A user's role is fixed at creation; delivery personnel carry
availability and delivery counters.
"""

from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SQLEnum,
    Float,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from deliveryhub.database.base import BaseModel, enum_values
from deliveryhub.services.orders.enums import Role


class User(BaseModel):
    """
    User model for customers, delivery personnel and admins.

    Attributes:
        id: Unique user identifier (UUID)
        name: Display name
        email: User email address (unique, indexed)
        phone: Optional contact phone number
        address: Optional postal address
        role: User role (immutable after creation)
        is_active: Account active status
        is_available: Delivery person is accepting assignments
        rating: Delivery rating between 1 and 5
        total_deliveries: Deliveries counted against the courier
        completed_deliveries: Deliveries the courier completed
        created_at: Account creation timestamp (from BaseModel)
        updated_at: Last modification timestamp (from BaseModel)
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Display name",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User email address",
    )

    phone: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="Contact phone number",
    )

    address: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Postal address",
    )

    role: Mapped[Role] = mapped_column(
        SQLEnum(
            Role,
            name="user_role",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=Role.CUSTOMER,
        index=True,
        comment="User role for access control",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Account active status",
    )

    # Delivery personnel fields
    is_available: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Delivery person is accepting assignments",
    )

    rating: Mapped[float] = mapped_column(
        Float,
        default=5.0,
        nullable=False,
        comment="Delivery rating",
    )

    total_deliveries: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Deliveries counted against the courier",
    )

    completed_deliveries: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Deliveries completed by the courier",
    )

    __table_args__ = (
        Index("ix_users_role_active_available", "role", "is_active", "is_available"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_users_rating_range"),
        CheckConstraint(
            "completed_deliveries >= 0 AND total_deliveries >= 0",
            name="ck_users_delivery_counters_positive",
        ),
        {"comment": "Customers, delivery personnel and admins"},
    )

    @property
    def is_delivery_person(self) -> bool:
        """Check if the user works as delivery personnel."""
        return self.role == Role.DELIVERY

    @property
    def can_take_assignments(self) -> bool:
        """Check if the user can be assigned a pending order."""
        return self.is_delivery_person and self.is_active and self.is_available
