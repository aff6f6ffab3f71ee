"""Role-based authorization rules for order actions.

``can_perform`` answers whether an actor may perform an action on an order;
``authorize`` raises the matching domain error when it may not.
"""

from typing import Any, Optional

from deliveryhub.core.errors import ForbiddenError, InvalidTransitionError
from deliveryhub.core.logging import get_logger
from deliveryhub.core.security import Actor
from deliveryhub.services.orders.enums import OrderAction, OrderStatus, Role

logger = get_logger(__name__)

_DENIED_MESSAGES: dict[OrderAction, str] = {
    OrderAction.CREATE: "Only customers can create orders",
    OrderAction.ASSIGN: "Only admins can assign orders",
    OrderAction.ADVANCE_STATUS: "Not authorized to update this order",
    OrderAction.CANCEL: "Not authorized to cancel this order",
    OrderAction.UPDATE_LOCATION: "Not authorized to update this order",
    OrderAction.VIEW: "Not authorized to view this order",
}


def _owns(actor: Actor, order: Any) -> bool:
    return order is not None and order.customer_id == actor.id


def _assigned_to(actor: Actor, order: Any) -> bool:
    return order is not None and order.delivery_person_id == actor.id


def _is_related(actor: Actor, action: OrderAction, order: Any) -> bool:
    """Role and ownership part of the rules, ignoring order status."""
    match actor.role:
        case Role.CUSTOMER:
            if action == OrderAction.CREATE:
                return True
            if action in (OrderAction.CANCEL, OrderAction.VIEW):
                return _owns(actor, order)
            return False
        case Role.DELIVERY:
            if action in (
                OrderAction.ADVANCE_STATUS,
                OrderAction.UPDATE_LOCATION,
                OrderAction.VIEW,
            ):
                return _assigned_to(actor, order)
            return False
        case Role.ADMIN:
            return action in (OrderAction.ASSIGN, OrderAction.VIEW)
        case _:
            return False


def _state_allows(action: OrderAction, order: Any) -> bool:
    if action == OrderAction.CANCEL:
        return OrderStatus(order.status) == OrderStatus.PENDING
    if action == OrderAction.UPDATE_LOCATION:
        return OrderStatus(order.status).is_in_progress()
    return True


def can_perform(actor: Actor, action: OrderAction, order: Optional[Any] = None) -> bool:
    """
    Check whether an actor may perform an action.

    Args:
        actor: Authenticated actor
        action: Requested action
        order: Target order, None for ``create`` and ``assign``

    Returns:
        True if the action is permitted
    """
    if not _is_related(actor, action, order):
        return False
    if order is None:
        return True
    return _state_allows(action, order)


def authorize(actor: Actor, action: OrderAction, order: Optional[Any] = None) -> None:
    """
    Enforce the authorization rules.

    A failed role or ownership check is ``ForbiddenError``. When the
    relationship holds but the order state does not, ``cancel`` reports
    ``InvalidTransitionError`` and ``update_location`` reports
    ``ForbiddenError``.

    Raises:
        ForbiddenError: If the actor is not allowed to act on the order
        InvalidTransitionError: If the owner cancels a non-pending order
    """
    order_id = str(order.id) if order is not None else None

    if not _is_related(actor, action, order):
        logger.warning(
            "Authorization denied",
            actor_id=str(actor.id),
            role=actor.role.value,
            action=action.value,
            order_id=order_id,
        )
        raise ForbiddenError(
            _DENIED_MESSAGES[action],
            action=action.value,
            order_id=order_id,
        )

    if order is None or _state_allows(action, order):
        return

    status = OrderStatus(order.status)
    if action == OrderAction.CANCEL:
        raise InvalidTransitionError(
            "Only pending orders can be cancelled",
            order_id=order_id,
            current_status=status.value,
            target_status=OrderStatus.CANCELLED.value,
        )

    raise ForbiddenError(
        "Can only update location for active deliveries",
        order_id=order_id,
        current_status=status.value,
    )
