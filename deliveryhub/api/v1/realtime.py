"""
WebSocket endpoint for real-time order notifications.

Each socket is registered with the process-scoped hub. A writer task drains
the connection outbox to the socket while the reader loop handles client
actions; replies go through the same outbox so the client sees every frame
in the order it was produced. Errors are sent as ``error`` events and the
socket stays open.
"""

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deliveryhub.api.deps import Hub
from deliveryhub.core.errors import AuthError, DeliveryHubError, InternalError, ValidationError
from deliveryhub.core.logging import get_logger
from deliveryhub.core.security import Actor
from deliveryhub.database.connection import get_session_factory
from deliveryhub.schemas.realtime import (
    AuthenticateAction,
    LocationUpdateAction,
    PingAction,
    SubscribeAction,
    SubscribeToOrdersAction,
    UnsubscribeAction,
    client_action_adapter,
)
from deliveryhub.services.notifications.dispatcher import NotificationDispatcher
from deliveryhub.services.orders.service import OrderService
from deliveryhub.services.realtime.hub import RealtimeConnection, RealtimeHub

logger = get_logger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def _pump(websocket: WebSocket, connection: RealtimeConnection) -> None:
    """Forward queued events to the socket until it closes."""
    try:
        while True:
            await websocket.send_json(await connection.next_event())
    except (WebSocketDisconnect, RuntimeError):
        logger.debug("Realtime writer stopped", connection_id=connection.id)


def _actor(connection: RealtimeConnection) -> Actor:
    identity = connection.identity
    if identity is None:
        raise AuthError("Not authenticated")
    return Actor(id=identity.user_id, role=identity.role, name=identity.name)


async def _handle(
    frame: dict[str, Any],
    connection: RealtimeConnection,
    hub: RealtimeHub,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    raw = frame.get("text")
    if raw is None:
        raise ValidationError("Only text frames are supported")
    try:
        action = client_action_adapter.validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError("Invalid message", errors=e.error_count()) from e

    match action:
        case AuthenticateAction(token=token):
            identity = await hub.authenticate(connection, token)
            connection.deliver(
                "authenticated",
                {
                    "user": {
                        "id": str(identity.user_id),
                        "name": identity.name,
                        "role": identity.role.value,
                    }
                },
            )
        case SubscribeToOrdersAction():
            topic = await hub.subscribe_to_orders(connection)
            connection.deliver("subscribed", {"topic": topic})
        case SubscribeAction(topic=topic):
            await hub.subscribe(connection, topic)
            connection.deliver("subscribed", {"topic": topic})
        case UnsubscribeAction(topic=topic):
            await hub.unsubscribe(connection, topic)
            connection.deliver("unsubscribed", {"topic": topic})
        case LocationUpdateAction():
            actor = _actor(connection)
            async with session_factory() as session:
                service = OrderService(session, NotificationDispatcher(hub))
                ack = await service.update_location(
                    actor, action.order_id, action.latitude, action.longitude
                )
            connection.deliver(
                "location_ack",
                {
                    "order_id": str(ack.order_id),
                    "latitude": ack.lat,
                    "longitude": ack.lng,
                    "timestamp": ack.timestamp.isoformat(),
                },
            )
        case PingAction():
            connection.deliver("pong", {"timestamp": datetime.now(timezone.utc).isoformat()})


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    hub: Hub,
    session_factory: SessionFactory,
) -> None:
    """
    Real-time channel.

    Clients authenticate with ``{"action": "authenticate", "token": ...}``
    and then subscribe to order topics. Server frames are
    ``{"event": ..., "data": {...}}``.
    """
    await websocket.accept()
    connection = await hub.connect()
    writer = asyncio.create_task(_pump(websocket, connection))

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000), frame.get("reason"))
            try:
                await _handle(frame, connection, hub, session_factory)
            except DeliveryHubError as e:
                logger.info(
                    "Realtime action rejected",
                    connection_id=connection.id,
                    error=e.kind,
                    message=e.message,
                )
                connection.deliver("error", e.to_dict())
            except Exception as e:
                logger.error(
                    "Realtime action failed",
                    connection_id=connection.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                connection.deliver("error", InternalError(str(e)).to_dict())
    except WebSocketDisconnect as e:
        logger.debug("Realtime client disconnected", connection_id=connection.id, code=e.code)
    finally:
        await hub.disconnect(connection)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer

