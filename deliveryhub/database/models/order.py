"""
Order model for delivery order management and tracking.

This module defines the Order model for delivery requests with status
tracking, courier assignment and live location, together with the
append-only OrderStatusHistory table.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deliveryhub.database.base import Base, BaseModel, enum_values, utcnow
from deliveryhub.services.orders.enums import OrderStatus, Priority

if TYPE_CHECKING:
    from deliveryhub.database.models.user import User


class Order(BaseModel):
    """
    Delivery order placed by a customer.

    Attributes:
        id: Unique order identifier (UUID)
        order_number: Human-readable order number
        customer_id: Customer who placed the order (immutable)
        delivery_person_id: Courier, set once on assignment
        pickup_address: Where the item is collected
        drop_address: Where the item is delivered
        item_description: What is being delivered
        pickup_lat/pickup_lng: Optional pickup coordinates
        drop_lat/drop_lng: Optional drop coordinates
        priority: Requested delivery priority
        delivery_instructions: Free-form instructions for the courier
        status: Current order status
        current_lat/current_lng: Last reported courier position
        last_location_update: When the courier position was reported
        estimated_delivery_time: ETA computed at creation
        actual_pickup_time: When the order was picked up
        actual_delivery_time: When the order was delivered
        customer: Customer profile, loaded with the order
        delivery_person: Courier profile once assigned
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Human-readable order number",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    delivery_person_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Assigned delivery person",
    )

    pickup_address: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Pickup address",
    )

    drop_address: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Drop address",
    )

    item_description: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        comment="Description of the delivered item",
    )

    pickup_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    drop_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    drop_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    priority: Mapped[Priority] = mapped_column(
        SQLEnum(
            Priority,
            name="order_priority",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=Priority.NORMAL,
        comment="Requested delivery priority",
    )

    delivery_instructions: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Instructions for the delivery person",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    # Tracking
    current_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    last_location_update: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the courier position was last reported",
    )

    estimated_delivery_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Estimated delivery time",
    )

    actual_pickup_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Actual pickup time",
    )

    actual_delivery_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Actual delivery time",
    )

    customer: Mapped["User"] = relationship(
        "User",
        foreign_keys=[customer_id],
        lazy="selectin",
    )

    delivery_person: Mapped[Optional["User"]] = relationship(
        "User",
        foreign_keys=[delivery_person_id],
        lazy="selectin",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.sequence",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_customer_created", "customer_id", "created_at"),
        Index("ix_orders_delivery_person_status", "delivery_person_id", "status"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint(
            "pickup_lat IS NULL OR (pickup_lat >= -90 AND pickup_lat <= 90)",
            name="ck_orders_pickup_lat_range",
        ),
        CheckConstraint(
            "drop_lat IS NULL OR (drop_lat >= -90 AND drop_lat <= 90)",
            name="ck_orders_drop_lat_range",
        ),
        CheckConstraint(
            "pickup_lng IS NULL OR (pickup_lng >= -180 AND pickup_lng <= 180)",
            name="ck_orders_pickup_lng_range",
        ),
        CheckConstraint(
            "drop_lng IS NULL OR (drop_lng >= -180 AND drop_lng <= 180)",
            name="ck_orders_drop_lng_range",
        ),
        {"comment": "Delivery orders"},
    )

    @property
    def pickup_coords(self) -> Optional[dict[str, float]]:
        if self.pickup_lat is None or self.pickup_lng is None:
            return None
        return {"lat": self.pickup_lat, "lng": self.pickup_lng}

    @property
    def drop_coords(self) -> Optional[dict[str, float]]:
        if self.drop_lat is None or self.drop_lng is None:
            return None
        return {"lat": self.drop_lat, "lng": self.drop_lng}

    @property
    def current_location(self) -> Optional[dict[str, float]]:
        if self.current_lat is None or self.current_lng is None:
            return None
        return {"lat": self.current_lat, "lng": self.current_lng}


class OrderStatusHistory(Base):
    """
    Append-only record of an order status change.

    Attributes:
        id: Unique entry identifier
        order_id: Order the entry belongs to
        sequence: Position of the entry within the order's history
        status: Status the order moved into
        timestamp: When the change happened
        updated_by: Actor who performed the change
        notes: Optional free-form notes
    """

    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position within the order history, starting at 1",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_order_status_history_sequence"),
        {"comment": "Append-only order status change log"},
    )
