"""
Cross-process fan-out for the real-time hub over Redis pub/sub.

Every API worker owns its own hub and sockets. When a worker publishes an
event it delivers to its local members first, then relays the event on a
shared Redis channel; the other workers deliver it to their own members.
Each relay carries the publishing process's instance id so a worker never
delivers its own events twice.

Delivery stays at-most-once: a relay lost while Redis is unreachable is
logged and not retried.
"""

import asyncio
import contextlib
import json
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from deliveryhub.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHANNEL = "deliveryhub:realtime"

# ``topic`` is None for broadcasts
LocalDelivery = Callable[[Optional[str], str, dict[str, Any]], Awaitable[int]]


def _sanitize_url(url: str) -> str:
    """Hide credentials before a Redis URL reaches the logs."""
    scheme, _, rest = url.partition("://")
    if "@" in rest:
        return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
    return url


class RedisFanout:
    """
    Relays hub publications between processes.

    Args:
        url: Redis connection URL
        channel: Pub/sub channel shared by every worker
        client: Pre-built client, mainly for tests; built from ``url`` otherwise
        reconnect_delay: Pause before listening again after a Redis error
    """

    def __init__(
        self,
        url: str,
        channel: str = DEFAULT_CHANNEL,
        client: Optional[Redis] = None,
        reconnect_delay: float = 1.0,
    ):
        self.url = url
        self.channel = channel
        self.instance_id = uuid4().hex
        self.reconnect_delay = reconnect_delay
        self._client = client
        self._pubsub = None
        self._deliver: Optional[LocalDelivery] = None
        self._listener: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def start(self, deliver: LocalDelivery) -> None:
        """
        Connect, subscribe to the channel and start relaying to ``deliver``.

        Args:
            deliver: Coroutine delivering a relayed event to local members

        Raises:
            RedisError: If Redis cannot be reached
        """
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=5.0,
                retry=Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3),
            )
        await self._client.ping()

        self._deliver = deliver
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._listener = asyncio.create_task(self._listen())

        logger.info(
            "Realtime fan-out started",
            url=_sanitize_url(self.url),
            channel=self.channel,
            instance_id=self.instance_id,
        )

    async def stop(self) -> None:
        """Stop relaying and close the Redis connections. Idempotent."""
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except RedisError as e:
                logger.warning("Realtime fan-out unsubscribe failed", error=str(e))
            self._pubsub = None

        if self._client is not None:
            await self._client.aclose()
            self._client = None

        logger.info("Realtime fan-out stopped", instance_id=self.instance_id)

    async def publish(self, topic: Optional[str], event: str, payload: dict[str, Any]) -> bool:
        """
        Relay an event to the other workers.

        Returns:
            False when the relay could not be sent
        """
        if self._client is None:
            return False

        message = json.dumps(
            {"origin": self.instance_id, "topic": topic, "event": event, "data": payload}
        )
        try:
            await self._client.publish(self.channel, message)
            return True
        except RedisError as e:
            logger.error(
                "Realtime relay failed",
                channel=self.channel,
                topic=topic,
                realtime_event=event,
                error=str(e),
            )
            return False

    async def handle_message(self, raw: str) -> int:
        """
        Deliver one relayed event to local members.

        Relays from this process and malformed messages are skipped.

        Returns:
            Number of local connections the event was enqueued for
        """
        try:
            message = json.loads(raw)
            origin = message["origin"]
            topic, event, payload = message["topic"], message["event"], message["data"]
        except (TypeError, ValueError, KeyError):
            logger.warning("Malformed realtime relay ignored", channel=self.channel)
            return 0

        if origin == self.instance_id or self._deliver is None:
            return 0
        return await self._deliver(topic, event, payload)

    async def _listen(self) -> None:
        while True:
            try:
                async for message in self._pubsub.listen():
                    if message.get("type") == "message":
                        await self.handle_message(message["data"])
                logger.info("Realtime fan-out channel closed", channel=self.channel)
                return
            except RedisError as e:
                logger.warning(
                    "Realtime fan-out listener interrupted",
                    error=str(e),
                    retry_in=self.reconnect_delay,
                )
                await asyncio.sleep(self.reconnect_delay)
