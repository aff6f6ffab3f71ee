"""Domain events emitted by order operations.

Events are plain immutable values. They are produced while an operation is
planned and handed to the notification dispatcher only after the change has
been committed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from deliveryhub.services.orders.enums import OrderStatus

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.ASSIGNED: "Your order has been assigned to a delivery person",
    OrderStatus.PICKED_UP: "Your order has been picked up and is on the way",
    OrderStatus.DELIVERED: "Your order has been delivered successfully",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


def status_message(status: OrderStatus) -> str:
    """Customer-facing message for a status change."""
    return STATUS_MESSAGES.get(status, f"Order status updated to {status.value}")


@dataclass(frozen=True)
class OrderCreated:
    order_id: UUID
    order_number: str
    customer_id: UUID
    pickup_address: str
    drop_address: str
    item_description: str
    priority: str
    created_at: datetime


@dataclass(frozen=True)
class OrderAssigned:
    order_id: UUID
    order_number: str
    customer_id: UUID
    delivery_person_id: UUID
    delivery_person_name: str
    pickup_address: str
    drop_address: str
    item_description: str


@dataclass(frozen=True)
class OrderStatusChanged:
    order_id: UUID
    order_number: str
    customer_id: UUID
    delivery_person_id: Optional[UUID]
    old_status: OrderStatus
    new_status: OrderStatus
    updated_by: UUID
    timestamp: datetime

    @property
    def message(self) -> str:
        return status_message(self.new_status)


@dataclass(frozen=True)
class LocationUpdated:
    order_id: UUID
    customer_id: UUID
    delivery_person_id: UUID
    delivery_person_name: Optional[str]
    lat: float
    lng: float
    timestamp: datetime


DomainEvent = Union[OrderCreated, OrderAssigned, OrderStatusChanged, LocationUpdated]
