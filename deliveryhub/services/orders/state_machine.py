"""Order state machine implemented as pure transition planning.

This module validates order status transitions and turns a valid request
into a ``TransitionPlan``: the column changes, the history entry, the side
effect commands and the domain events that an orchestrator executes. Nothing
here touches the database or the real-time hub.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from uuid import UUID

from deliveryhub.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationError,
)
from deliveryhub.core.logging import get_logger
from deliveryhub.services.orders.enums import (
    OrderStatus,
    Role,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from deliveryhub.services.orders.events import (
    DomainEvent,
    OrderAssigned,
    OrderStatusChanged,
)

logger = get_logger(__name__)

CANCELLED_BY_CUSTOMER = "Cancelled by customer"


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One append-only status history record."""

    sequence: int
    status: OrderStatus
    timestamp: datetime
    updated_by: UUID
    notes: Optional[str] = None


@dataclass(frozen=True)
class Assignee:
    """The delivery person an admin wants to assign."""

    id: UUID
    name: str
    role: Role
    is_active: bool
    is_available: bool


@dataclass(frozen=True)
class OrderSnapshot:
    """Immutable view of the order fields the state machine reads."""

    id: UUID
    order_number: str
    customer_id: UUID
    status: OrderStatus
    pickup_address: str
    drop_address: str
    item_description: str
    delivery_person_id: Optional[UUID] = None
    history: Tuple[StatusHistoryEntry, ...] = ()

    @classmethod
    def of(cls, order: Any) -> "OrderSnapshot":
        """Build a snapshot from a persisted order."""
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            status=OrderStatus(order.status),
            pickup_address=order.pickup_address,
            drop_address=order.drop_address,
            item_description=order.item_description,
            delivery_person_id=order.delivery_person_id,
            history=tuple(
                StatusHistoryEntry(
                    sequence=entry.sequence,
                    status=OrderStatus(entry.status),
                    timestamp=entry.timestamp,
                    updated_by=entry.updated_by,
                    notes=entry.notes,
                )
                for entry in order.status_history
            ),
        )


@dataclass(frozen=True)
class IncrementDeliveryCounters:
    """Credit a completed delivery to a delivery person."""

    user_id: UUID


SideEffect = IncrementDeliveryCounters


@dataclass(frozen=True)
class TransitionPlan:
    """Everything needed to apply one status transition."""

    order_id: UUID
    expected_status: OrderStatus
    target_status: OrderStatus
    changes: Mapping[str, Any]
    history_entry: StatusHistoryEntry
    commands: Tuple[SideEffect, ...] = ()
    events: Tuple[DomainEvent, ...] = ()


@dataclass(frozen=True)
class _Request:
    snapshot: OrderSnapshot
    target: OrderStatus
    actor_id: UUID
    notes: Optional[str]
    assignee: Optional[Assignee]
    now: datetime


def _guard_assign(request: _Request) -> None:
    assignee = request.assignee
    if assignee is None or assignee.role != Role.DELIVERY:
        raise ValidationError(
            "Invalid delivery person",
            delivery_person_id=str(assignee.id) if assignee else None,
        )
    if not assignee.is_active or not assignee.is_available:
        raise ValidationError(
            "Delivery person is not available",
            delivery_person_id=str(assignee.id),
        )


def _guard_assigned_courier(request: _Request) -> None:
    if request.snapshot.delivery_person_id != request.actor_id:
        raise ForbiddenError(
            "Not authorized to update this order",
            order_id=str(request.snapshot.id),
        )


def _guard_owner(request: _Request) -> None:
    if request.snapshot.customer_id != request.actor_id:
        raise ForbiddenError(
            "Not authorized to cancel this order",
            order_id=str(request.snapshot.id),
        )


_TRANSITION_GUARDS: Dict[
    Tuple[OrderStatus, OrderStatus], Callable[[_Request], None]
] = {
    (OrderStatus.PENDING, OrderStatus.ASSIGNED): _guard_assign,
    (OrderStatus.ASSIGNED, OrderStatus.PICKED_UP): _guard_assigned_courier,
    (OrderStatus.PICKED_UP, OrderStatus.DELIVERED): _guard_assigned_courier,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): _guard_owner,
}


def _transition_error(current: OrderStatus, target: OrderStatus) -> InvalidTransitionError:
    allowed = sorted(s.value for s in get_allowed_order_transitions(current))
    if target == OrderStatus.PICKED_UP:
        message = "Order must be assigned before it can be picked up"
    elif target == OrderStatus.DELIVERED:
        message = "Order must be picked up before it can be delivered"
    elif target == OrderStatus.ASSIGNED:
        message = "Order is not in pending status"
    elif target == OrderStatus.CANCELLED:
        message = "Only pending orders can be cancelled"
    else:
        message = f"Invalid transition from {current.value} to {target.value}"
    return InvalidTransitionError(
        message,
        current_status=current.value,
        target_status=target.value,
        allowed_transitions=allowed,
    )


def _build_changes(request: _Request) -> Dict[str, Any]:
    changes: Dict[str, Any] = {"status": request.target, "updated_at": request.now}
    if request.target == OrderStatus.ASSIGNED:
        changes["delivery_person_id"] = request.assignee.id
    elif request.target == OrderStatus.PICKED_UP:
        changes["actual_pickup_time"] = request.now
    elif request.target == OrderStatus.DELIVERED:
        changes["actual_delivery_time"] = request.now
    return changes


def _default_notes(request: _Request) -> Optional[str]:
    if request.notes:
        return request.notes
    if request.target == OrderStatus.ASSIGNED:
        return f"Assigned to {request.assignee.name}"
    if request.target == OrderStatus.CANCELLED:
        return CANCELLED_BY_CUSTOMER
    return None


def plan_transition(
    snapshot: OrderSnapshot,
    target: OrderStatus,
    actor_id: UUID,
    *,
    notes: Optional[str] = None,
    assignee: Optional[Assignee] = None,
    now: Optional[datetime] = None,
) -> TransitionPlan:
    """
    Validate a transition and plan its effects.

    Args:
        snapshot: Current state of the order
        target: Requested status
        actor_id: User requesting the transition
        notes: Optional history notes
        assignee: Delivery person, required when target is ``assigned``
        now: Transition time, defaults to the current UTC time

    Returns:
        TransitionPlan describing the changes to apply

    Raises:
        InvalidTransitionError: If the edge is not in the transition table
        ValidationError: If the assignee is missing or cannot take orders
        ForbiddenError: If the actor is not party to the edge
    """
    current = snapshot.status
    target = OrderStatus(target)

    if not validate_order_status_transition(current, target):
        raise _transition_error(current, target)

    request = _Request(
        snapshot=snapshot,
        target=target,
        actor_id=actor_id,
        notes=notes,
        assignee=assignee,
        now=now or datetime.now(timezone.utc),
    )

    guard = _TRANSITION_GUARDS.get((current, target))
    if guard is not None:
        guard(request)

    entry = StatusHistoryEntry(
        sequence=len(snapshot.history) + 1,
        status=target,
        timestamp=request.now,
        updated_by=actor_id,
        notes=_default_notes(request),
    )

    commands: Tuple[SideEffect, ...] = ()
    if target == OrderStatus.DELIVERED:
        commands = (IncrementDeliveryCounters(user_id=actor_id),)

    delivery_person_id = (
        assignee.id if target == OrderStatus.ASSIGNED else snapshot.delivery_person_id
    )

    events: list[DomainEvent] = [
        OrderStatusChanged(
            order_id=snapshot.id,
            order_number=snapshot.order_number,
            customer_id=snapshot.customer_id,
            delivery_person_id=delivery_person_id,
            old_status=current,
            new_status=target,
            updated_by=actor_id,
            timestamp=request.now,
        )
    ]
    if target == OrderStatus.ASSIGNED:
        events.insert(
            0,
            OrderAssigned(
                order_id=snapshot.id,
                order_number=snapshot.order_number,
                customer_id=snapshot.customer_id,
                delivery_person_id=assignee.id,
                delivery_person_name=assignee.name,
                pickup_address=snapshot.pickup_address,
                drop_address=snapshot.drop_address,
                item_description=snapshot.item_description,
            ),
        )

    logger.debug(
        "State transition planned",
        order_id=str(snapshot.id),
        transition=f"{current.value}->{target.value}",
        actor_id=str(actor_id),
    )

    return TransitionPlan(
        order_id=snapshot.id,
        expected_status=current,
        target_status=target,
        changes=_build_changes(request),
        history_entry=entry,
        commands=commands,
        events=tuple(events),
    )


def apply_plan(snapshot: OrderSnapshot, plan: TransitionPlan) -> OrderSnapshot:
    """
    Apply a plan to a snapshot, returning the new state.

    Raises:
        ConflictError: If the snapshot is no longer in the planned prior state
    """
    if snapshot.id != plan.order_id or snapshot.status != plan.expected_status:
        raise ConflictError(
            "Order was modified concurrently",
            order_id=str(snapshot.id),
            expected_status=plan.expected_status.value,
            actual_status=snapshot.status.value,
        )

    return replace(
        snapshot,
        status=plan.target_status,
        delivery_person_id=plan.changes.get(
            "delivery_person_id", snapshot.delivery_person_id
        ),
        history=snapshot.history + (plan.history_entry,),
    )
