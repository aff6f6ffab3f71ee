"""
Notification dispatcher translating domain events into real-time messages.

The dispatcher is called only after an order change has been committed. It
maps each domain event to one or more topic publishes on the real-time hub.
A failed publish is logged and swallowed: the state change it reports is
already durable and clients reconcile by listing orders.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from deliveryhub.core.logging import get_logger
from deliveryhub.services.orders.enums import Role
from deliveryhub.services.orders.events import (
    DomainEvent,
    LocationUpdated,
    OrderAssigned,
    OrderCreated,
    OrderStatusChanged,
)
from deliveryhub.services.realtime.hub import RealtimeHub
from deliveryhub.services.realtime.topics import (
    ADMIN_ORDERS,
    customer_topic,
    delivery_topic,
    role_topic,
)

logger = get_logger(__name__)

NEW_ORDER = "new_order"
ORDER_ASSIGNED = "order_assigned"
NEW_ASSIGNMENT = "new_assignment"
ORDER_STATUS_UPDATE = "order_status_update"
DELIVERY_LOCATION = "delivery_location"
SYSTEM_ALERT = "system_alert"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class NotificationDispatcher:
    """
    Publishes domain events to role-scoped topics.

    Args:
        hub: Real-time hub to publish through
    """

    def __init__(self, hub: RealtimeHub):
        self.hub = hub

    async def _publish(self, topic: str, event: str, payload: dict[str, Any]) -> int:
        try:
            return await self.hub.publish(topic, event, payload)
        except Exception as e:
            logger.error(
                "Realtime publish failed",
                topic=topic,
                realtime_event=event,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

    async def dispatch(self, event: DomainEvent) -> None:
        """Publish one domain event to its topics."""
        match event:
            case OrderCreated():
                await self._order_created(event)
            case OrderAssigned():
                await self._order_assigned(event)
            case OrderStatusChanged():
                await self._order_status_changed(event)
            case LocationUpdated():
                await self._location_updated(event)
            case _:
                logger.warning("Unhandled domain event", event_type=type(event).__name__)

    async def dispatch_all(self, events: Iterable[DomainEvent]) -> None:
        """Publish domain events in order."""
        for event in events:
            await self.dispatch(event)

    async def _order_created(self, event: OrderCreated) -> None:
        await self._publish(
            ADMIN_ORDERS,
            NEW_ORDER,
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "customer_id": str(event.customer_id),
                "pickup_address": event.pickup_address,
                "drop_address": event.drop_address,
                "item_description": event.item_description,
                "priority": event.priority,
                "timestamp": _iso(event.created_at),
            },
        )
        logger.info("New order notification sent", order_id=str(event.order_id))

    async def _order_assigned(self, event: OrderAssigned) -> None:
        await self._publish(
            customer_topic(event.customer_id),
            ORDER_ASSIGNED,
            {
                "order_id": str(event.order_id),
                "delivery_person_name": event.delivery_person_name,
                "message": f"Your order has been assigned to {event.delivery_person_name}",
            },
        )
        await self._publish(
            delivery_topic(event.delivery_person_id),
            NEW_ASSIGNMENT,
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "pickup_address": event.pickup_address,
                "drop_address": event.drop_address,
                "item_description": event.item_description,
                "message": "You have a new delivery assignment",
            },
        )
        logger.info("Order assignment notifications sent", order_id=str(event.order_id))

    async def _order_status_changed(self, event: OrderStatusChanged) -> None:
        await self._publish(
            customer_topic(event.customer_id),
            ORDER_STATUS_UPDATE,
            {
                "order_id": str(event.order_id),
                "old_status": event.old_status.value,
                "new_status": event.new_status.value,
                "message": event.message,
                "timestamp": _iso(event.timestamp),
            },
        )
        await self._publish(
            ADMIN_ORDERS,
            ORDER_STATUS_UPDATE,
            {
                "order_id": str(event.order_id),
                "customer_id": str(event.customer_id),
                "delivery_person_id": _str(event.delivery_person_id),
                "old_status": event.old_status.value,
                "new_status": event.new_status.value,
                "updated_by": str(event.updated_by),
                "timestamp": _iso(event.timestamp),
            },
        )
        logger.info(
            "Status update notifications sent",
            order_id=str(event.order_id),
            transition=f"{event.old_status.value}->{event.new_status.value}",
        )

    async def _location_updated(self, event: LocationUpdated) -> None:
        payload = {
            "order_id": str(event.order_id),
            "latitude": event.lat,
            "longitude": event.lng,
            "delivery_person_name": event.delivery_person_name,
            "timestamp": _iso(event.timestamp),
        }
        await self._publish(customer_topic(event.customer_id), DELIVERY_LOCATION, payload)
        await self._publish(
            ADMIN_ORDERS,
            DELIVERY_LOCATION,
            {
                **payload,
                "delivery_person_id": str(event.delivery_person_id),
                "customer_id": str(event.customer_id),
            },
        )

    async def system_alert(
        self,
        message: str,
        level: str = "info",
        target_role: Optional[Role] = None,
    ) -> int:
        """
        Send an operator alert to one role or to every connection.

        Returns:
            Number of connections the alert was enqueued for
        """
        payload = {
            "message": message,
            "type": level,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if target_role is not None:
            delivered = await self._publish(role_topic(target_role), SYSTEM_ALERT, payload)
        else:
            try:
                delivered = await self.hub.broadcast(SYSTEM_ALERT, payload)
            except Exception as e:
                logger.error("Realtime broadcast failed", error=str(e))
                delivered = 0

        logger.info(
            "System alert sent",
            level=level,
            target_role=target_role.value if target_role else None,
            delivered=delivered,
        )
        return delivered
