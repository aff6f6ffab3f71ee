"""
Real-time hub with topic-based fan-out.

The hub keeps a registry of live connections and their topic memberships.
Each connection owns a bounded FIFO outbox that a transport (the WebSocket
endpoint) drains; publishing only enqueues, so it never waits on a slow
client. Delivery is at-most-once: a full outbox drops the message for that
connection and there is no replay for late joiners.

A hub serves the sockets of its own process. When the API runs as several
workers, a RedisFanout relays every publication to the other hubs.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID, uuid4

from deliveryhub.core.errors import AuthError, ForbiddenError
from deliveryhub.core.logging import get_logger
from deliveryhub.services.orders.enums import Role
from deliveryhub.services.realtime.fanout import RedisFanout
from deliveryhub.services.realtime.topics import (
    Identity,
    allowed_topics,
    implicit_topics,
    order_topic,
)

logger = get_logger(__name__)

Authenticator = Callable[[str], Awaitable[Identity]]


@dataclass
class RealtimeConnection:
    """A live client connection and its pending outbound events."""

    outbox: asyncio.Queue
    id: str = field(default_factory=lambda: uuid4().hex)
    identity: Optional[Identity] = None
    topics: set[str] = field(default_factory=set)
    dropped: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def deliver(self, event: str, data: dict[str, Any]) -> bool:
        """Enqueue an event; returns False if the outbox is full."""
        try:
            self.outbox.put_nowait({"event": event, "data": data})
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Realtime outbox full, event dropped",
                connection_id=self.id,
                realtime_event=event,
                dropped=self.dropped,
            )
            return False

    async def next_event(self) -> dict[str, Any]:
        """Wait for the next outbound event."""
        return await self.outbox.get()

    def drain(self) -> list[dict[str, Any]]:
        """Take every event currently queued without waiting."""
        events = []
        while not self.outbox.empty():
            events.append(self.outbox.get_nowait())
        return events


class RealtimeHub:
    """
    Connection registry and topic fan-out.

    Args:
        authenticator: Async callable verifying a credential into an Identity
        outbox_size: Maximum queued events per connection
        fanout: Relay to the hubs of other worker processes, if any
    """

    def __init__(
        self,
        authenticator: Authenticator,
        outbox_size: int = 100,
        fanout: Optional[RedisFanout] = None,
    ):
        self._authenticator = authenticator
        self._outbox_size = outbox_size
        self._fanout = fanout
        self._lock = asyncio.Lock()
        self._connections: dict[str, RealtimeConnection] = {}
        self._topics: dict[str, set[str]] = {}

    async def start(self) -> None:
        """Start relaying events from other workers, when a fan-out is configured."""
        if self._fanout is not None:
            await self._fanout.start(self.deliver_local)

    async def close(self) -> None:
        """Stop the fan-out. Local connections are left to their transports."""
        if self._fanout is not None:
            await self._fanout.stop()

    async def connect(self) -> RealtimeConnection:
        """Register a new unauthenticated connection."""
        connection = RealtimeConnection(outbox=asyncio.Queue(maxsize=self._outbox_size))
        async with self._lock:
            self._connections[connection.id] = connection
        logger.info("Realtime connection opened", connection_id=connection.id)
        return connection

    def _join(self, connection: RealtimeConnection, topic: str) -> None:
        self._topics.setdefault(topic, set()).add(connection.id)
        connection.topics.add(topic)

    def _leave(self, connection: RealtimeConnection, topic: str) -> None:
        members = self._topics.get(topic)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._topics[topic]
        connection.topics.discard(topic)

    async def authenticate(self, connection: RealtimeConnection, token: str) -> Identity:
        """
        Bind a connection to the identity behind a credential.

        On success the connection joins ``user_<id>`` and ``role_<role>``.
        Re-authenticating drops every previous membership first.

        Raises:
            AuthError: If the credential is rejected
        """
        try:
            identity = await self._authenticator(token)
        except AuthError:
            logger.warning("Realtime authentication failed", connection_id=connection.id)
            raise

        async with self._lock:
            if connection.id not in self._connections:
                raise AuthError("Connection is closed")
            for topic in list(connection.topics):
                self._leave(connection, topic)
            connection.identity = identity
            for topic in implicit_topics(identity):
                self._join(connection, topic)

        logger.info(
            "Realtime connection authenticated",
            connection_id=connection.id,
            user_id=str(identity.user_id),
            role=identity.role.value,
        )
        return identity

    async def subscribe(self, connection: RealtimeConnection, topic: str) -> None:
        """
        Join a topic. Idempotent.

        The scope check and the join happen under the registry lock, so a
        concurrent re-authentication cannot leave the connection in a topic
        of its previous identity.

        Args:
            connection: Connection joining the topic
            topic: Topic name, e.g. ``customer_<id>``

        Raises:
            AuthError: If the connection is not authenticated
            ForbiddenError: If the topic is outside the identity's scope
        """
        async with self._lock:
            identity = connection.identity
            if identity is None:
                raise AuthError("Not authenticated")
            if topic not in allowed_topics(identity):
                logger.warning(
                    "Realtime subscription denied",
                    connection_id=connection.id,
                    user_id=str(identity.user_id),
                    topic=topic,
                )
                raise ForbiddenError("Not authorized to subscribe to this topic", topic=topic)
            if connection.id in self._connections:
                self._join(connection, topic)

        logger.debug("Realtime subscription added", connection_id=connection.id, topic=topic)

    async def subscribe_to_orders(self, connection: RealtimeConnection) -> str:
        """
        Join the order topic for the connection's role.

        Returns:
            The joined topic

        Raises:
            AuthError: If the connection is not authenticated
        """
        if connection.identity is None:
            raise AuthError("Not authenticated")
        topic = order_topic(connection.identity)
        await self.subscribe(connection, topic)
        return topic

    async def unsubscribe(self, connection: RealtimeConnection, topic: str) -> None:
        """Leave a topic. Idempotent."""
        async with self._lock:
            self._leave(connection, topic)

    async def disconnect(self, connection: RealtimeConnection) -> None:
        """Remove a connection from the registry and every topic. Idempotent."""
        async with self._lock:
            for topic in list(connection.topics):
                self._leave(connection, topic)
            removed = self._connections.pop(connection.id, None)

        if removed is not None:
            logger.info(
                "Realtime connection closed",
                connection_id=connection.id,
                user_id=str(connection.identity.user_id) if connection.identity else None,
                dropped=connection.dropped,
            )

    async def deliver_local(self, topic: Optional[str], event: str, payload: dict[str, Any]) -> int:
        """
        Enqueue an event for the members of a topic in this process only.

        Args:
            topic: Topic name, or None for every open connection
            event: Event name sent to clients
            payload: JSON-serializable event data

        Returns:
            Number of connections the event was enqueued for
        """
        async with self._lock:
            if topic is None:
                members = list(self._connections.values())
            else:
                members = [
                    self._connections[connection_id]
                    for connection_id in self._topics.get(topic, ())
                    if connection_id in self._connections
                ]

        delivered = sum(1 for connection in members if connection.deliver(event, payload))

        logger.debug(
            "Realtime event delivered",
            topic=topic,
            realtime_event=event,
            members=len(members),
            delivered=delivered,
        )
        return delivered

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> int:
        """
        Deliver an event to every current member of a topic.

        Local members are served first; with a fan-out configured the event
        is then relayed to the other workers.

        Returns:
            Number of local connections the event was enqueued for
        """
        delivered = await self.deliver_local(topic, event, payload)
        if self._fanout is not None:
            await self._fanout.publish(topic, event, payload)
        return delivered

    async def broadcast(self, event: str, payload: dict[str, Any]) -> int:
        """Deliver an event to every open connection, in every worker."""
        delivered = await self.deliver_local(None, event, payload)
        if self._fanout is not None:
            await self._fanout.publish(None, event, payload)
        return delivered

    async def connected_users(self) -> list[Identity]:
        """Distinct identities with at least one authenticated connection."""
        async with self._lock:
            identities = {
                connection.identity.user_id: connection.identity
                for connection in self._connections.values()
                if connection.identity is not None
            }
        return list(identities.values())

    async def connected_users_by_role(self, role: Role) -> list[Identity]:
        """
        Identities of a given role connected to this process.

        Args:
            role: Role to filter on

        Returns:
            Distinct identities, one per user
        """
        return [identity for identity in await self.connected_users() if identity.role == role]

    async def is_user_online(self, user_id: UUID) -> bool:
        """Whether the user has an authenticated connection to this process."""
        return any(identity.user_id == user_id for identity in await self.connected_users())

    async def topic_members(self, topic: str) -> set[str]:
        """Connection ids currently subscribed to a topic."""
        async with self._lock:
            return set(self._topics.get(topic, ()))

    @property
    def connection_count(self) -> int:
        """Open connections in this process, authenticated or not."""
        return len(self._connections)
