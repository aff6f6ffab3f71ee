"""
Order data access repository with guarded transitions.

This module implements the OrderRepository class providing async methods for
creating orders, applying planned status transitions behind an expected-status
guard, updating courier locations, listing orders with filters and
aggregating status counts. Transactions are owned by the caller; the
repository only flushes.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from deliveryhub.core.errors import ConflictError, InternalError, NotFoundError
from deliveryhub.core.logging import get_logger
from deliveryhub.database.models.order import Order, OrderStatusHistory
from deliveryhub.services.orders.enums import OrderStatus
from deliveryhub.services.orders.state_machine import TransitionPlan

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderFilter:
    """Listing filter with page-based pagination."""

    statuses: Optional[frozenset[OrderStatus]] = None
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class OrderRepository:
    """
    Repository for order data access operations.

    Provides async methods for creating, reading and transitioning orders.
    Every status change goes through ``apply_transition``, whose guarded
    UPDATE is the per-order linearization point.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    def _select_with_history(self):
        return select(Order).options(selectinload(Order.status_history))

    async def _reload(self, order_id: uuid.UUID) -> Order:
        stmt = (
            self._select_with_history()
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def _exists(self, order_id: uuid.UUID) -> bool:
        result = await self.session.execute(select(Order.id).where(Order.id == order_id))
        return result.scalar_one_or_none() is not None

    async def create(self, order: Order) -> Order:
        """
        Persist a new order.

        Args:
            order: Unsaved order instance

        Returns:
            Persisted order with an empty status history

        Raises:
            InternalError: If the insert fails
        """
        try:
            self.session.add(order)
            await self.session.flush()
            order = await self._reload(order.id)

            logger.info(
                "Order created",
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(order.customer_id),
            )

            return order

        except SQLAlchemyError as e:
            logger.error(
                "Order creation failed",
                order_number=order.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InternalError("Failed to create order", error=str(e)) from e

    async def get_by_id(self, order_id: uuid.UUID) -> Order:
        """
        Retrieve order by ID with its status history.

        Args:
            order_id: Order identifier

        Returns:
            Order instance

        Raises:
            NotFoundError: If order does not exist
            InternalError: If the query fails
        """
        try:
            stmt = self._select_with_history().where(Order.id == order_id)
            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to retrieve order",
                order_id=str(order_id),
                error=str(e),
            )
            raise InternalError("Failed to retrieve order", error=str(e)) from e

        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        return order

    async def apply_transition(
        self,
        order_id: uuid.UUID,
        expected_status: OrderStatus,
        plan: TransitionPlan,
    ) -> Order:
        """
        Apply a planned transition if the order is still in the expected state.

        Issues a single ``UPDATE ... WHERE id = :id AND status = :expected``
        and appends the planned history entry in the same transaction.

        Args:
            order_id: Order identifier
            expected_status: Status the plan was computed against
            plan: Planned transition

        Returns:
            Updated order with refreshed history

        Raises:
            NotFoundError: If order does not exist
            ConflictError: If the order left the expected status
            InternalError: If the update fails
        """
        try:
            stmt = (
                update(Order)
                .where(Order.id == order_id, Order.status == expected_status)
                .values(**plan.changes)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                if not await self._exists(order_id):
                    raise NotFoundError("Order not found", order_id=str(order_id))
                logger.warning(
                    "Guarded transition lost race",
                    order_id=str(order_id),
                    expected_status=expected_status.value,
                    target_status=plan.target_status.value,
                )
                raise ConflictError(
                    "Order was modified concurrently, reload and retry",
                    order_id=str(order_id),
                    expected_status=expected_status.value,
                )

            entry = plan.history_entry
            self.session.add(
                OrderStatusHistory(
                    order_id=order_id,
                    sequence=entry.sequence,
                    status=entry.status,
                    timestamp=entry.timestamp,
                    updated_by=entry.updated_by,
                    notes=entry.notes,
                )
            )
            await self.session.flush()

            logger.info(
                "Order status transitioned",
                order_id=str(order_id),
                transition=f"{expected_status.value}->{plan.target_status.value}",
                sequence=entry.sequence,
            )

            return await self._reload(order_id)

        except IntegrityError as e:
            logger.warning(
                "History append collided",
                order_id=str(order_id),
                error=str(e),
            )
            raise ConflictError(
                "Order was modified concurrently, reload and retry",
                order_id=str(order_id),
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Failed to apply transition",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InternalError("Failed to update order", error=str(e)) from e

    async def update_location(
        self,
        order_id: uuid.UUID,
        delivery_person_id: uuid.UUID,
        lat: float,
        lng: float,
        now: datetime,
    ) -> Order:
        """
        Record the courier position on an active order.

        The update only applies while the order is assigned to the given
        delivery person and in an in-progress status.

        Raises:
            NotFoundError: If order does not exist
            ConflictError: If the order is no longer active for this courier
            InternalError: If the update fails
        """
        try:
            stmt = (
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.delivery_person_id == delivery_person_id,
                    Order.status.in_([OrderStatus.ASSIGNED, OrderStatus.PICKED_UP]),
                )
                .values(
                    current_lat=lat,
                    current_lng=lng,
                    last_location_update=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                if not await self._exists(order_id):
                    raise NotFoundError("Order not found", order_id=str(order_id))
                raise ConflictError(
                    "Order is no longer an active delivery",
                    order_id=str(order_id),
                )

            logger.debug(
                "Order location updated",
                order_id=str(order_id),
                lat=lat,
                lng=lng,
            )

            return await self._reload(order_id)

        except SQLAlchemyError as e:
            logger.error(
                "Failed to update location",
                order_id=str(order_id),
                error=str(e),
            )
            raise InternalError("Failed to update location", error=str(e)) from e

    async def _list(self, order_filter: OrderFilter, *criteria) -> Sequence[Order]:
        stmt = self._select_with_history().where(*criteria)
        if order_filter.statuses:
            stmt = stmt.where(Order.status.in_(order_filter.statuses))
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset(order_filter.offset)
            .limit(order_filter.limit)
        )
        try:
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list orders", error=str(e))
            raise InternalError("Failed to list orders", error=str(e)) from e

    async def list_by_customer(
        self,
        customer_id: uuid.UUID,
        order_filter: OrderFilter,
    ) -> Sequence[Order]:
        """List a customer's orders, newest first."""
        return await self._list(order_filter, Order.customer_id == customer_id)

    async def list_by_delivery_person(
        self,
        delivery_person_id: uuid.UUID,
        order_filter: OrderFilter,
    ) -> Sequence[Order]:
        """List orders assigned to a delivery person, newest first."""
        return await self._list(
            order_filter, Order.delivery_person_id == delivery_person_id
        )

    async def list_all(self, order_filter: OrderFilter) -> Sequence[Order]:
        """List every order, newest first."""
        return await self._list(order_filter)

    async def aggregate_status_counts(
        self,
        customer_id: Optional[uuid.UUID] = None,
        delivery_person_id: Optional[uuid.UUID] = None,
    ) -> dict[OrderStatus, int]:
        """
        Count orders per status.

        Args:
            customer_id: Restrict to a customer's orders
            delivery_person_id: Restrict to a courier's orders

        Returns:
            Mapping with an entry for every status, zero when absent
        """
        stmt = select(Order.status, func.count(Order.id)).group_by(Order.status)
        if customer_id is not None:
            stmt = stmt.where(Order.customer_id == customer_id)
        if delivery_person_id is not None:
            stmt = stmt.where(Order.delivery_person_id == delivery_person_id)

        try:
            result = await self.session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Failed to aggregate order statistics", error=str(e))
            raise InternalError("Failed to aggregate orders", error=str(e)) from e

        counts = {status: 0 for status in OrderStatus}
        for status, count in rows:
            counts[OrderStatus(status)] = count
        return counts
