"""Order status, role and action enums for delivery order management.

This module defines the core enums for the delivery order lifecycle,
including order status, user role, priority and the actions subject to
authorization, together with the state transition table.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Delivery order lifecycle status.

    Valid transitions:
    - PENDING -> ASSIGNED, CANCELLED
    - ASSIGNED -> PICKED_UP
    - PICKED_UP -> DELIVERED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked-up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def is_in_progress(self) -> bool:
        """Check if a delivery person is currently working the order."""
        return self in {OrderStatus.ASSIGNED, OrderStatus.PICKED_UP}

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return self.value.replace("-", " ").title()


class Role(str, Enum):
    """User role. Fixed at user creation."""

    CUSTOMER = "customer"
    DELIVERY = "delivery"
    ADMIN = "admin"


class Priority(str, Enum):
    """Delivery priority requested by the customer."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class OrderAction(str, Enum):
    """Actions on orders that are subject to authorization."""

    CREATE = "create"
    ASSIGN = "assign"
    ADVANCE_STATUS = "advance_status"
    CANCEL = "cancel"
    UPDATE_LOCATION = "update_location"
    VIEW = "view"


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.ASSIGNED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ASSIGNED: {
        OrderStatus.PICKED_UP,
    },
    OrderStatus.PICKED_UP: {
        OrderStatus.DELIVERED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

# Statuses a delivery person may move an order into themselves
DELIVERY_ADVANCE_TARGETS: Set[OrderStatus] = {
    OrderStatus.PICKED_UP,
    OrderStatus.DELIVERED,
}


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status

    Returns:
        Set of allowed next statuses
    """
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()
