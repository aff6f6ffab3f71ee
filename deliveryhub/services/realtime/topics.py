"""
Topic naming and per-identity topic scope.

Topics are plain strings. Every authenticated connection joins its
``user_<id>`` and ``role_<role>`` topics; the order topic of its role is
joined on request. No identity may join another user's topics or the admin
order feed unless it is an admin.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from deliveryhub.services.orders.enums import Role

ADMIN_ORDERS = "admin_orders"


@dataclass(frozen=True)
class Identity:
    """Authenticated user bound to a real-time connection."""

    user_id: UUID
    role: Role
    name: Optional[str] = None


def user_topic(user_id: UUID) -> str:
    """Personal topic of one user, e.g. ``user_<id>``."""
    return f"user_{user_id}"


def role_topic(role: Role) -> str:
    """Topic shared by every connection of a role, e.g. ``role_delivery``."""
    return f"role_{Role(role).value}"


def customer_topic(customer_id: UUID) -> str:
    """Order events for the orders a customer placed."""
    return f"customer_{customer_id}"


def delivery_topic(delivery_person_id: UUID) -> str:
    """Order events for the orders assigned to a delivery person."""
    return f"delivery_{delivery_person_id}"


def order_topic(identity: Identity) -> str:
    """
    The topic carrying order events for an identity's role.

    Args:
        identity: Authenticated identity

    Returns:
        ``customer_<id>``, ``delivery_<id>`` or ``admin_orders``
    """
    match identity.role:
        case Role.CUSTOMER:
            return customer_topic(identity.user_id)
        case Role.DELIVERY:
            return delivery_topic(identity.user_id)
        case Role.ADMIN:
            return ADMIN_ORDERS


def implicit_topics(identity: Identity) -> set[str]:
    """Topics a connection joins on authentication."""
    return {user_topic(identity.user_id), role_topic(identity.role)}


def allowed_topics(identity: Identity) -> set[str]:
    """Every topic an identity may subscribe to."""
    return implicit_topics(identity) | {order_topic(identity)}
