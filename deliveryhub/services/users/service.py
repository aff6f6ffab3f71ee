"""
User account management.

Profile edits by the account owner, and the admin operations on accounts:
paginated listing, deactivation and reactivation, courier performance and
per-role statistics. Deactivated accounts can no longer authenticate and
are never offered for assignment.
"""

import math
import uuid
from typing import Any, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryhub.core.errors import ForbiddenError, InternalError, NotFoundError, ValidationError
from deliveryhub.core.logging import get_logger
from deliveryhub.database.models.user import User
from deliveryhub.services.orders.enums import OrderStatus, Role
from deliveryhub.services.orders.repository import OrderRepository
from deliveryhub.services.orders.service import courier_order_summary, customer_order_summary
from deliveryhub.services.realtime.hub import RealtimeHub
from deliveryhub.services.users.repository import UserRepository

logger = get_logger(__name__)

PROFILE_FIELDS = frozenset({"name", "phone", "address"})


class UserService:
    """
    Account management on top of the user repository.

    Attributes:
        session: Database session owning the transaction
        users: User repository
        orders: Order repository, for statistics
        hub: Real-time hub of this process, for presence
    """

    def __init__(self, session: AsyncSession, hub: Optional[RealtimeHub] = None):
        self.session = session
        self.users = UserRepository(session)
        self.orders = OrderRepository(session)
        self.hub = hub

    async def _commit(self, operation: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("User update failed", operation=operation, error=str(e))
            raise InternalError("Failed to update user", error=str(e)) from e

    async def update_profile(self, user: User, changes: dict[str, Any]) -> User:
        """
        Apply profile changes made by the account owner.

        Args:
            user: The account being edited
            changes: Subset of ``name``, ``phone`` and ``address``; a None
                phone or address clears it

        Returns:
            The updated user

        Raises:
            ValidationError: If a field outside the profile is given, or
                the name is blank
        """
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValidationError("Unknown profile fields", fields=sorted(unknown))
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Name is required", field="name")

        values = {
            key: value.strip() if isinstance(value, str) else value
            for key, value in changes.items()
        }
        if not values:
            return user
        updated = await self.users.update_fields(user.id, **values)
        await self._commit("update_profile")

        logger.info("Profile updated", user_id=str(user.id), fields=sorted(values))
        return updated

    async def set_active(self, user_id: uuid.UUID, is_active: bool) -> User:
        """
        Deactivate or reactivate an account.

        Admin accounts cannot be deactivated. Deactivating a delivery
        person also withdraws their availability.

        Raises:
            NotFoundError: If the user does not exist
            ValidationError: If an admin account would be deactivated
        """
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found", user_id=str(user_id))
        if not is_active and user.role == Role.ADMIN:
            raise ValidationError("Cannot deactivate admin accounts", user_id=str(user_id))

        values: dict[str, Any] = {"is_active": is_active}
        if not is_active and user.role == Role.DELIVERY:
            values["is_available"] = False

        updated = await self.users.update_fields(user_id, **values)
        await self._commit("set_active")

        logger.info(
            "Account activated" if is_active else "Account deactivated",
            user_id=str(user_id),
            role=updated.role.value,
        )
        return updated

    async def list_users(
        self,
        *,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[Sequence[User], int, int]:
        """
        Page through accounts, newest first.

        Returns:
            The page of users, the total match count and the page count
        """
        users, total = await self.users.list_users(
            role=role,
            is_active=is_active,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return users, total, math.ceil(total / limit)

    async def delivery_performance(self) -> list[dict[str, Any]]:
        """
        Per courier assignment counts, most completed deliveries first.

        ``is_online`` reflects the sockets held by this process.
        """
        rows = await self.users.delivery_performance()
        performance = []
        for row in rows:
            performance.append(
                {
                    "id": row.user.id,
                    "name": row.user.name,
                    "email": row.user.email,
                    "rating": row.user.rating,
                    "is_available": row.user.is_available,
                    "is_active": row.user.is_active,
                    "is_online": (
                        await self.hub.is_user_online(row.user.id) if self.hub else False
                    ),
                    "total_orders": row.total_orders,
                    "completed_orders": row.completed_orders,
                    "active_orders": row.active_orders,
                    "completion_rate": row.completion_rate,
                }
            )
        return performance

    async def get_user_stats(self, user: User) -> dict[str, float | int | bool]:
        """
        Account and order counts for the user's role.

        Returns:
            Customer: the customer order summary.
            Delivery: the assignment summary plus ``rating`` and
            ``is_available``.
            Admin: ``total_orders``, ``total_users``, users per role,
            order counts by progress, and the live ``online_delivery_personnel``
            and ``realtime_connections`` of this process.
        """
        match user.role:
            case Role.CUSTOMER:
                counts = await self.orders.aggregate_status_counts(customer_id=user.id)
                return customer_order_summary(counts)
            case Role.DELIVERY:
                counts = await self.orders.aggregate_status_counts(delivery_person_id=user.id)
                return {
                    **courier_order_summary(counts),
                    "rating": user.rating,
                    "is_available": user.is_available,
                }
            case Role.ADMIN:
                counts = await self.orders.aggregate_status_counts()
                by_role = await self.users.count_by_role()
                summary = customer_order_summary(counts)
                stats: dict[str, float | int | bool] = {
                    "total_orders": summary["total_orders"],
                    "total_users": sum(by_role.values()),
                    "customers": by_role[Role.CUSTOMER],
                    "delivery_personnel": by_role[Role.DELIVERY],
                    "admins": by_role[Role.ADMIN],
                    "pending": summary["pending"],
                    "in_progress": summary["in_progress"],
                    "delivered": counts[OrderStatus.DELIVERED],
                    "cancelled": counts[OrderStatus.CANCELLED],
                    "online_delivery_personnel": 0,
                    "realtime_connections": 0,
                }
                if self.hub is not None:
                    stats["online_delivery_personnel"] = len(
                        await self.hub.connected_users_by_role(Role.DELIVERY)
                    )
                    stats["realtime_connections"] = self.hub.connection_count
                return stats
            case _:
                raise ForbiddenError("Invalid role")
