"""
Order service orchestrating the delivery order lifecycle.

This module implements the OrderService class. Every mutating operation runs
the same pipeline: authorize, plan the change with the pure state machine,
apply it through the guarded repository, execute side effects in the same
transaction, commit, and only then hand the domain events to the
notification dispatcher. Mutations are bounded by a timeout and roll back
as a whole when it expires.
"""

import asyncio
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryhub.core.config import get_settings
from deliveryhub.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    OperationTimeoutError,
    ValidationError,
)
from deliveryhub.core.logging import get_logger, log_performance
from deliveryhub.core.security import Actor
from deliveryhub.database.models.order import Order
from deliveryhub.database.models.user import User
from deliveryhub.services.notifications.dispatcher import NotificationDispatcher
from deliveryhub.services.orders.enums import (
    DELIVERY_ADVANCE_TARGETS,
    OrderAction,
    OrderStatus,
    Priority,
    Role,
)
from deliveryhub.services.orders.events import DomainEvent, LocationUpdated, OrderCreated
from deliveryhub.services.orders.geo import estimate_delivery_time
from deliveryhub.services.orders.policy import authorize
from deliveryhub.services.orders.repository import OrderFilter, OrderRepository
from deliveryhub.services.orders.state_machine import (
    Assignee,
    IncrementDeliveryCounters,
    OrderSnapshot,
    TransitionPlan,
    plan_transition,
)
from deliveryhub.services.users.repository import UserRepository

logger = get_logger(__name__)

MAX_ADDRESS_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 1000
MAX_INSTRUCTIONS_LENGTH = 500

IN_PROGRESS_STATUSES = frozenset({OrderStatus.ASSIGNED, OrderStatus.PICKED_UP})


@dataclass(frozen=True)
class LocationAck:
    """Acknowledgement of a recorded courier position."""

    order_id: uuid.UUID
    lat: float
    lng: float
    timestamp: datetime


def _require_text(value: Optional[str], field_name: str, max_length: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required", field=field_name)
    if len(text) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
        )
    return text


def _validate_point(lat: Any, lng: Any, field_name: str) -> Tuple[float, float]:
    try:
        lat_value, lng_value = float(lat), float(lng)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field_name} must be numeric", field=field_name) from e
    if not -90 <= lat_value <= 90:
        raise ValidationError("Latitude must be between -90 and 90", field=field_name)
    if not -180 <= lng_value <= 180:
        raise ValidationError("Longitude must be between -180 and 180", field=field_name)
    return lat_value, lng_value


def _coords(value: Optional[dict[str, Any]], field_name: str) -> Optional[dict[str, float]]:
    """A coordinate pair is kept only when both values are present."""
    if not value or value.get("lat") is None or value.get("lng") is None:
        return None
    lat, lng = _validate_point(value["lat"], value["lng"], field_name)
    return {"lat": lat, "lng": lng}


def customer_order_summary(counts: dict[OrderStatus, int]) -> dict[str, int]:
    """Order counts as shown to a customer."""
    return {
        "total_orders": sum(counts.values()),
        "pending": counts[OrderStatus.PENDING],
        "in_progress": sum(counts[status] for status in IN_PROGRESS_STATUSES),
        "delivered": counts[OrderStatus.DELIVERED],
        "cancelled": counts[OrderStatus.CANCELLED],
    }


def courier_order_summary(counts: dict[OrderStatus, int]) -> dict[str, int]:
    """Assignment counts as shown to a delivery person."""
    return {
        "total_assigned": sum(counts.values()),
        "active": sum(counts[status] for status in IN_PROGRESS_STATUSES),
        "picked_up": counts[OrderStatus.PICKED_UP],
        "completed": counts[OrderStatus.DELIVERED],
    }


class OrderService:
    """
    Order service orchestrating the delivery order lifecycle.

    Attributes:
        session: Database session owning the transaction
        orders: Order repository
        users: User repository
        dispatcher: Notification dispatcher for committed changes
        timeout_seconds: Time budget for a single mutation
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            dispatcher: Dispatcher receiving events after commit
            timeout_seconds: Mutation time budget, defaults to settings
        """
        settings = get_settings()
        self.session = session
        self.orders = OrderRepository(session)
        self.users = UserRepository(session)
        self.dispatcher = dispatcher
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.order_operation_timeout_seconds
        )
        self.default_page_size = settings.default_page_size
        self.max_page_size = settings.max_page_size

    async def _rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            logger.error("Rollback failed", error=str(e))

    async def _mutate(
        self,
        operation: str,
        work: Callable[[], Awaitable[Tuple[Any, Iterable[DomainEvent]]]],
        **context: Any,
    ) -> Any:
        """
        Run a mutation under the time budget, commit, then dispatch.

        ``work`` returns the operation result and the domain events to
        publish once the transaction is committed. The budget covers
        ``work`` only: once the commit starts it runs to completion, so a
        durable change is never reported as a timeout and always dispatched.

        Raises:
            OperationTimeoutError: If ``work`` outlives the time budget
        """
        with log_performance(logger, operation, **context):
            try:
                result, events = await asyncio.wait_for(work(), timeout=self.timeout_seconds)
                await asyncio.shield(self.session.commit())
            except asyncio.TimeoutError as e:
                await self._rollback()
                logger.error(
                    "Order operation timed out",
                    operation=operation,
                    timeout_seconds=self.timeout_seconds,
                    **context,
                )
                raise OperationTimeoutError(
                    "Operation timed out",
                    operation=operation,
                    timeout_seconds=self.timeout_seconds,
                ) from e
            except Exception:
                await self._rollback()
                raise

        await self.dispatcher.dispatch_all(events)
        return result

    async def _apply(self, plan: TransitionPlan) -> Order:
        order = await self.orders.apply_transition(plan.order_id, plan.expected_status, plan)
        for command in plan.commands:
            if isinstance(command, IncrementDeliveryCounters):
                await self.users.record_completed_delivery(command.user_id)
        return order

    def _generate_order_number(self) -> str:
        """
        Generate unique order number.

        Returns:
            Order number string
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        random_suffix = secrets.token_hex(3).upper()
        return f"DLV-{timestamp}-{random_suffix}"

    async def create_order(
        self,
        actor: Actor,
        *,
        pickup_address: str,
        drop_address: str,
        item_description: str,
        pickup_coords: Optional[dict[str, Any]] = None,
        drop_coords: Optional[dict[str, Any]] = None,
        priority: Priority = Priority.NORMAL,
        delivery_instructions: Optional[str] = None,
    ) -> Order:
        """
        Create a pending order for a customer.

        Args:
            actor: Customer placing the order
            pickup_address: Pickup address
            drop_address: Drop address
            item_description: What is being delivered
            pickup_coords: Optional ``{"lat", "lng"}`` pickup point
            drop_coords: Optional ``{"lat", "lng"}`` drop point
            priority: Delivery priority
            delivery_instructions: Optional courier instructions

        Returns:
            Created order with status pending and an empty history

        Raises:
            ForbiddenError: If the actor is not a customer
            ValidationError: If any input is missing or malformed
        """
        authorize(actor, OrderAction.CREATE)

        pickup = _require_text(pickup_address, "pickup_address", MAX_ADDRESS_LENGTH)
        drop = _require_text(drop_address, "drop_address", MAX_ADDRESS_LENGTH)
        item = _require_text(item_description, "item_description", MAX_DESCRIPTION_LENGTH)
        instructions = (delivery_instructions or "").strip() or None
        if instructions and len(instructions) > MAX_INSTRUCTIONS_LENGTH:
            raise ValidationError(
                f"delivery_instructions must be at most {MAX_INSTRUCTIONS_LENGTH} characters",
                field="delivery_instructions",
            )
        try:
            priority = Priority(priority)
        except ValueError as e:
            raise ValidationError("Invalid priority", field="priority") from e

        pickup_point = _coords(pickup_coords, "pickup_coords")
        drop_point = _coords(drop_coords, "drop_coords")

        async def work():
            now = datetime.now(timezone.utc)
            order = Order(
                id=uuid.uuid4(),
                order_number=self._generate_order_number(),
                customer_id=actor.id,
                pickup_address=pickup,
                drop_address=drop,
                item_description=item,
                pickup_lat=pickup_point["lat"] if pickup_point else None,
                pickup_lng=pickup_point["lng"] if pickup_point else None,
                drop_lat=drop_point["lat"] if drop_point else None,
                drop_lng=drop_point["lng"] if drop_point else None,
                priority=priority,
                delivery_instructions=instructions,
                status=OrderStatus.PENDING,
                estimated_delivery_time=estimate_delivery_time(pickup_point, drop_point, now),
                created_at=now,
                updated_at=now,
            )
            order = await self.orders.create(order)
            event = OrderCreated(
                order_id=order.id,
                order_number=order.order_number,
                customer_id=order.customer_id,
                pickup_address=order.pickup_address,
                drop_address=order.drop_address,
                item_description=order.item_description,
                priority=order.priority.value,
                created_at=now,
            )
            return order, [event]

        return await self._mutate("create_order", work, customer_id=str(actor.id))

    async def list_orders(
        self,
        actor: Actor,
        statuses: Optional[Iterable[OrderStatus]] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Sequence[Order]:
        """
        List the orders visible to an actor, newest first.

        Customers see their own orders, delivery personnel their assigned
        orders (active ones unless a status filter is given) and admins
        every order.

        Raises:
            ValidationError: If pagination is out of range
        """
        limit = self.default_page_size if limit is None else limit
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= limit <= self.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.max_page_size}",
                field="limit",
            )

        status_set = frozenset(OrderStatus(s) for s in statuses) if statuses else None

        match actor.role:
            case Role.CUSTOMER:
                return await self.orders.list_by_customer(
                    actor.id, OrderFilter(statuses=status_set, page=page, limit=limit)
                )
            case Role.DELIVERY:
                return await self.orders.list_by_delivery_person(
                    actor.id,
                    OrderFilter(
                        statuses=status_set or IN_PROGRESS_STATUSES,
                        page=page,
                        limit=limit,
                    ),
                )
            case Role.ADMIN:
                return await self.orders.list_all(
                    OrderFilter(statuses=status_set, page=page, limit=limit)
                )
            case _:
                raise ForbiddenError("Invalid role")

    async def get_order(self, actor: Actor, order_id: uuid.UUID) -> Order:
        """
        Retrieve an order the actor may view.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the order is outside the actor's scope
        """
        order = await self.orders.get_by_id(order_id)
        authorize(actor, OrderAction.VIEW, order)
        return order

    async def assign_order(
        self,
        actor: Actor,
        order_id: uuid.UUID,
        delivery_person_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Assign a pending order to a delivery person.

        Raises:
            ForbiddenError: If the actor is not an admin
            NotFoundError: If the order does not exist
            InvalidTransitionError: If the order is not pending
            ValidationError: If the delivery person cannot take the order
            ConflictError: If another assignment won the race
        """
        authorize(actor, OrderAction.ASSIGN)
        if delivery_person_id is None:
            raise ValidationError("Delivery person ID is required", field="delivery_person_id")

        async def work():
            order = await self.orders.get_by_id(order_id)
            courier = await self.users.get_by_id(delivery_person_id)
            plan = plan_transition(
                OrderSnapshot.of(order),
                OrderStatus.ASSIGNED,
                actor.id,
                notes=notes,
                assignee=self._assignee(courier),
            )
            order = await self._apply(plan)
            return order, plan.events

        return await self._mutate(
            "assign_order",
            work,
            order_id=str(order_id),
            delivery_person_id=str(delivery_person_id),
        )

    @staticmethod
    def _assignee(user: Optional[User]) -> Optional[Assignee]:
        if user is None:
            return None
        return Assignee(
            id=user.id,
            name=user.name,
            role=user.role,
            is_active=user.is_active,
            is_available=user.is_available,
        )

    async def update_order_status(
        self,
        actor: Actor,
        order_id: uuid.UUID,
        status: OrderStatus,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Advance an order the delivery person is assigned to.

        Only ``picked-up`` and ``delivered`` may be requested. Delivering an
        order credits the courier's delivery counters in the same
        transaction.

        Raises:
            ForbiddenError: If the actor is not the assigned delivery person
            NotFoundError: If the order does not exist
            InvalidTransitionError: If the requested status is not reachable
            ConflictError: If the order changed concurrently
        """
        if actor.role != Role.DELIVERY:
            raise ForbiddenError("Only delivery personnel can update order status")

        try:
            target = OrderStatus(status)
        except ValueError as e:
            raise ValidationError("Invalid status", field="status") from e
        if target not in DELIVERY_ADVANCE_TARGETS:
            raise InvalidTransitionError(
                "Invalid status",
                target_status=target.value,
                allowed=sorted(s.value for s in DELIVERY_ADVANCE_TARGETS),
            )

        async def work():
            order = await self.orders.get_by_id(order_id)
            authorize(actor, OrderAction.ADVANCE_STATUS, order)
            plan = plan_transition(OrderSnapshot.of(order), target, actor.id, notes=notes)
            order = await self._apply(plan)
            return order, plan.events

        return await self._mutate(
            "update_order_status",
            work,
            order_id=str(order_id),
            target_status=target.value,
        )

    async def update_location(
        self,
        actor: Actor,
        order_id: uuid.UUID,
        lat: float,
        lng: float,
    ) -> LocationAck:
        """
        Record the courier's position on an active order.

        Raises:
            ForbiddenError: If the actor is not the assigned delivery person
                or the order is not active
            ValidationError: If the coordinates are out of range
            NotFoundError: If the order does not exist
            ConflictError: If the order stopped being active concurrently
        """
        if actor.role != Role.DELIVERY:
            raise ForbiddenError("Only delivery personnel can update location")

        lat, lng = _validate_point(lat, lng, "location")

        async def work():
            order = await self.orders.get_by_id(order_id)
            authorize(actor, OrderAction.UPDATE_LOCATION, order)
            now = datetime.now(timezone.utc)
            order = await self.orders.update_location(order_id, actor.id, lat, lng, now)
            event = LocationUpdated(
                order_id=order.id,
                customer_id=order.customer_id,
                delivery_person_id=actor.id,
                delivery_person_name=actor.name,
                lat=lat,
                lng=lng,
                timestamp=now,
            )
            return LocationAck(order_id=order.id, lat=lat, lng=lng, timestamp=now), [event]

        return await self._mutate("update_location", work, order_id=str(order_id))

    async def cancel_order(
        self,
        actor: Actor,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Cancel a pending order owned by the customer.

        Raises:
            ForbiddenError: If the actor does not own the order
            NotFoundError: If the order does not exist
            InvalidTransitionError: If the order is no longer pending
            ConflictError: If the order changed concurrently
        """

        async def work():
            order = await self.orders.get_by_id(order_id)
            authorize(actor, OrderAction.CANCEL, order)
            plan = plan_transition(
                OrderSnapshot.of(order),
                OrderStatus.CANCELLED,
                actor.id,
                notes=(reason or "").strip() or None,
            )
            order = await self._apply(plan)
            return order, plan.events

        return await self._mutate("cancel_order", work, order_id=str(order_id))

    async def get_order_stats(self, actor: Actor) -> dict[str, int]:
        """
        Summarize order counts for the actor's role.

        Returns:
            Admin: ``total`` plus one entry per status.
            Customer: ``total_orders``, ``pending``, ``in_progress``,
            ``delivered``, ``cancelled``.
            Delivery: ``total_assigned``, ``active``, ``picked_up``,
            ``completed``.
        """
        match actor.role:
            case Role.ADMIN:
                counts = await self.orders.aggregate_status_counts()
                stats = {"total": sum(counts.values())}
                stats.update({status.value: counts[status] for status in OrderStatus})
                return stats
            case Role.CUSTOMER:
                counts = await self.orders.aggregate_status_counts(customer_id=actor.id)
                return customer_order_summary(counts)
            case Role.DELIVERY:
                counts = await self.orders.aggregate_status_counts(delivery_person_id=actor.id)
                return courier_order_summary(counts)
            case _:
                raise ForbiddenError("Invalid role")
