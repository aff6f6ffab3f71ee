"""
User data access repository.

Provides lookups used by authentication and assignment, delivery
availability toggling, the delivery counter update applied when an
order is delivered, and the account queries behind user management.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryhub.core.errors import ConflictError, InternalError, NotFoundError
from deliveryhub.core.logging import get_logger
from deliveryhub.database.models.order import Order
from deliveryhub.database.models.user import User
from deliveryhub.services.orders.enums import OrderStatus, Role

logger = get_logger(__name__)


@dataclass(frozen=True)
class CourierPerformance:
    """Assignment counts of one courier."""

    user: User
    total_orders: int
    completed_orders: int
    active_orders: int

    @property
    def completion_rate(self) -> float:
        """Completed share of assigned orders, in percent."""
        if not self.total_orders:
            return 0.0
        return round(self.completed_orders / self.total_orders * 100, 2)


class UserRepository:
    """Repository for user data access operations."""

    def __init__(self, session: AsyncSession):
        """
        Initialize user repository.

        Args:
            session: Async database session; the caller owns the transaction
        """
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """
        Retrieve user by ID.

        Args:
            user_id: User identifier

        Returns:
            User instance or None if not found

        Raises:
            InternalError: If the query fails
        """
        try:
            result = await self.session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to retrieve user", user_id=str(user_id), error=str(e))
            raise InternalError("Failed to retrieve user", error=str(e)) from e

    async def create(
        self,
        name: str,
        email: str,
        role: Role,
        *,
        is_active: bool = True,
        is_available: bool = True,
        phone: Optional[str] = None,
    ) -> User:
        """
        Create a user.

        Raises:
            ConflictError: If the email is already registered
            InternalError: If the insert fails
        """
        user = User(
            name=name,
            email=email.lower(),
            role=role,
            phone=phone,
            is_active=is_active,
            is_available=is_available,
        )
        try:
            self.session.add(user)
            await self.session.flush()
        except IntegrityError as e:
            logger.warning("User email already registered", email=email)
            raise ConflictError("User with this email already exists", email=email) from e
        except SQLAlchemyError as e:
            logger.error("Failed to create user", email=email, error=str(e))
            raise InternalError("Failed to create user", error=str(e)) from e

        logger.info("User created", user_id=str(user.id), role=role.value)
        return user

    async def list_available_delivery_personnel(self) -> Sequence[User]:
        """List active delivery personnel who accept assignments, best rated first."""
        stmt = (
            select(User)
            .where(
                User.role == Role.DELIVERY,
                User.is_active.is_(True),
                User.is_available.is_(True),
            )
            .order_by(User.rating.desc(), User.name)
        )
        try:
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list delivery personnel", error=str(e))
            raise InternalError("Failed to list delivery personnel", error=str(e)) from e

    async def set_availability(self, user_id: uuid.UUID, is_available: bool) -> User:
        """
        Toggle whether a delivery person accepts assignments.

        Raises:
            NotFoundError: If the user does not exist or is not delivery personnel
            InternalError: If the update fails
        """
        try:
            result = await self.session.execute(
                update(User)
                .where(User.id == user_id, User.role == Role.DELIVERY)
                .values(is_available=is_available)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error("Failed to update availability", user_id=str(user_id), error=str(e))
            raise InternalError("Failed to update availability", error=str(e)) from e

        if result.rowcount == 0:
            raise NotFoundError("Delivery person not found", user_id=str(user_id))

        logger.info(
            "Delivery availability updated",
            user_id=str(user_id),
            is_available=is_available,
        )
        return await self._reload(user_id)

    async def record_completed_delivery(self, user_id: uuid.UUID) -> None:
        """
        Credit one completed delivery to a courier.

        ``completed_deliveries`` is incremented and ``total_deliveries`` is
        raised to at least the new completed count in a single UPDATE.

        Raises:
            NotFoundError: If the user does not exist
            InternalError: If the update fails
        """
        completed = User.completed_deliveries + 1
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                completed_deliveries=completed,
                total_deliveries=case(
                    (User.total_deliveries < completed, completed),
                    else_=User.total_deliveries,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to record completed delivery",
                user_id=str(user_id),
                error=str(e),
            )
            raise InternalError("Failed to update delivery counters", error=str(e)) from e

        if result.rowcount == 0:
            raise NotFoundError("Delivery person not found", user_id=str(user_id))

        logger.info("Completed delivery recorded", user_id=str(user_id))

    async def list_users(
        self,
        *,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[Sequence[User], int]:
        """
        Page through users, newest first.

        Args:
            role: Only users with this role
            is_active: Only active (True) or deactivated (False) accounts
            offset: Rows to skip
            limit: Maximum rows to return

        Returns:
            The page of users and the total number of matches

        Raises:
            InternalError: If the query fails
        """
        criteria = []
        if role is not None:
            criteria.append(User.role == role)
        if is_active is not None:
            criteria.append(User.is_active.is_(is_active))

        try:
            total = await self.session.scalar(select(func.count(User.id)).where(*criteria))
            result = await self.session.execute(
                select(User)
                .where(*criteria)
                .order_by(User.created_at.desc(), User.email)
                .offset(offset)
                .limit(limit)
            )
        except SQLAlchemyError as e:
            logger.error("Failed to list users", error=str(e))
            raise InternalError("Failed to list users", error=str(e)) from e

        return list(result.scalars().all()), total or 0

    async def count_by_role(self) -> dict[Role, int]:
        """Number of accounts per role, zero for roles without users."""
        try:
            result = await self.session.execute(
                select(User.role, func.count(User.id)).group_by(User.role)
            )
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Failed to count users", error=str(e))
            raise InternalError("Failed to count users", error=str(e)) from e

        counts = {role: 0 for role in Role}
        for role, count in rows:
            counts[Role(role)] = count
        return counts

    async def delivery_performance(self) -> list[CourierPerformance]:
        """
        Assignment counts for every courier, most completed deliveries first.

        Couriers without assignments are included with zero counts.

        Raises:
            InternalError: If the query fails
        """
        total = func.count(Order.id)
        completed = func.coalesce(
            func.sum(case((Order.status == OrderStatus.DELIVERED, 1), else_=0)), 0
        )
        active = func.coalesce(
            func.sum(
                case(
                    (Order.status.in_([OrderStatus.ASSIGNED, OrderStatus.PICKED_UP]), 1),
                    else_=0,
                )
            ),
            0,
        )
        stmt = (
            select(User, total, completed, active)
            .outerjoin(Order, Order.delivery_person_id == User.id)
            .where(User.role == Role.DELIVERY)
            .group_by(User.id)
            .order_by(completed.desc(), User.name)
        )
        try:
            result = await self.session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Failed to compute delivery performance", error=str(e))
            raise InternalError("Failed to compute delivery performance", error=str(e)) from e

        return [
            CourierPerformance(
                user=user,
                total_orders=total_orders,
                completed_orders=completed_orders,
                active_orders=active_orders,
            )
            for user, total_orders, completed_orders, active_orders in rows
        ]

    async def update_fields(self, user_id: uuid.UUID, **values: Any) -> User:
        """
        Write profile or account columns of one user.

        Raises:
            NotFoundError: If the user does not exist
            InternalError: If the update fails
        """
        try:
            result = await self.session.execute(
                update(User)
                .where(User.id == user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error("Failed to update user", user_id=str(user_id), error=str(e))
            raise InternalError("Failed to update user", error=str(e)) from e

        if result.rowcount == 0:
            raise NotFoundError("User not found", user_id=str(user_id))

        logger.info("User updated", user_id=str(user_id), fields=sorted(values))
        return await self._reload(user_id)

    async def _reload(self, user_id: uuid.UUID) -> User:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()
