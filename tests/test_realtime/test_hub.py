"""
Tests for the real-time hub: authentication, topic scope, fan-out and
outbox back-pressure.
"""

import asyncio
from uuid import uuid4

import pytest

from deliveryhub.core.errors import AuthError, ForbiddenError
from deliveryhub.services.orders.enums import Role
from deliveryhub.services.realtime.hub import RealtimeHub
from deliveryhub.services.realtime.topics import (
    ADMIN_ORDERS,
    Identity,
    allowed_topics,
    customer_topic,
    delivery_topic,
    implicit_topics,
    order_topic,
    role_topic,
    user_topic,
)

CUSTOMER = Identity(user_id=uuid4(), role=Role.CUSTOMER, name="Casey")
OTHER_CUSTOMER = Identity(user_id=uuid4(), role=Role.CUSTOMER, name="Olive")
COURIER = Identity(user_id=uuid4(), role=Role.DELIVERY, name="Dana")
ADMIN = Identity(user_id=uuid4(), role=Role.ADMIN, name="Avery")

TOKENS = {
    "customer-token": CUSTOMER,
    "other-customer-token": OTHER_CUSTOMER,
    "courier-token": COURIER,
    "admin-token": ADMIN,
}


async def fake_authenticator(token: str) -> Identity:
    try:
        return TOKENS[token]
    except KeyError:
        raise AuthError("Invalid token") from None


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub(fake_authenticator, outbox_size=3)


async def connect_as(hub: RealtimeHub, token: str):
    connection = await hub.connect()
    await hub.authenticate(connection, token)
    return connection


# ============================================================================
# Topic Scope Tests
# ============================================================================


class TestTopics:
    def test_order_topic_per_role(self):
        assert order_topic(CUSTOMER) == f"customer_{CUSTOMER.user_id}"
        assert order_topic(COURIER) == f"delivery_{COURIER.user_id}"
        assert order_topic(ADMIN) == ADMIN_ORDERS

    def test_implicit_topics(self):
        assert implicit_topics(COURIER) == {user_topic(COURIER.user_id), "role_delivery"}

    def test_allowed_topics_exclude_other_users(self):
        allowed = allowed_topics(CUSTOMER)

        assert customer_topic(CUSTOMER.user_id) in allowed
        assert customer_topic(OTHER_CUSTOMER.user_id) not in allowed
        assert ADMIN_ORDERS not in allowed
        assert role_topic(Role.ADMIN) not in allowed


# ============================================================================
# Authentication Tests
# ============================================================================


class TestAuthenticate:
    async def test_authenticate_joins_implicit_topics(self, hub):
        connection = await connect_as(hub, "courier-token")

        assert connection.is_authenticated
        assert connection.topics == implicit_topics(COURIER)
        assert await hub.topic_members(role_topic(Role.DELIVERY)) == {connection.id}

    async def test_bad_token_leaves_connection_unauthenticated(self, hub):
        connection = await hub.connect()

        with pytest.raises(AuthError):
            await hub.authenticate(connection, "forged")

        assert not connection.is_authenticated
        assert connection.topics == set()

    async def test_reauthentication_replaces_memberships(self, hub):
        connection = await connect_as(hub, "customer-token")
        await hub.subscribe_to_orders(connection)

        await hub.authenticate(connection, "other-customer-token")

        assert connection.identity == OTHER_CUSTOMER
        assert customer_topic(CUSTOMER.user_id) not in connection.topics
        assert await hub.topic_members(customer_topic(CUSTOMER.user_id)) == set()


# ============================================================================
# Subscription Tests
# ============================================================================


class TestSubscribe:
    async def test_unauthenticated_subscribe(self, hub):
        connection = await hub.connect()

        with pytest.raises(AuthError):
            await hub.subscribe(connection, ADMIN_ORDERS)
        with pytest.raises(AuthError):
            await hub.subscribe_to_orders(connection)

    async def test_foreign_topic_is_forbidden(self, hub):
        connection = await connect_as(hub, "customer-token")

        with pytest.raises(ForbiddenError):
            await hub.subscribe(connection, customer_topic(OTHER_CUSTOMER.user_id))
        with pytest.raises(ForbiddenError):
            await hub.subscribe(connection, ADMIN_ORDERS)

    @pytest.mark.parametrize(
        "token,expected",
        [
            ("customer-token", customer_topic(CUSTOMER.user_id)),
            ("courier-token", delivery_topic(COURIER.user_id)),
            ("admin-token", ADMIN_ORDERS),
        ],
    )
    async def test_subscribe_to_orders(self, hub, token, expected):
        connection = await connect_as(hub, token)

        assert await hub.subscribe_to_orders(connection) == expected
        assert expected in connection.topics

    async def test_subscribe_racing_reauthentication_uses_new_identity(self, hub):
        connection = await connect_as(hub, "customer-token")
        previous_scope = customer_topic(CUSTOMER.user_id)

        async with hub._lock:
            reauthenticate = asyncio.create_task(
                hub.authenticate(connection, "other-customer-token")
            )
            await asyncio.sleep(0)
            subscribe = asyncio.create_task(hub.subscribe(connection, previous_scope))
            await asyncio.sleep(0)

        assert await reauthenticate == OTHER_CUSTOMER
        with pytest.raises(ForbiddenError):
            await subscribe
        assert previous_scope not in connection.topics
        assert await hub.topic_members(previous_scope) == set()

    async def test_subscribe_is_idempotent(self, hub):
        connection = await connect_as(hub, "admin-token")
        await hub.subscribe(connection, ADMIN_ORDERS)
        await hub.subscribe(connection, ADMIN_ORDERS)

        assert await hub.publish(ADMIN_ORDERS, "new_order", {}) == 1

    async def test_unsubscribe(self, hub):
        connection = await connect_as(hub, "admin-token")
        await hub.subscribe_to_orders(connection)
        await hub.unsubscribe(connection, ADMIN_ORDERS)
        await hub.unsubscribe(connection, ADMIN_ORDERS)

        assert await hub.publish(ADMIN_ORDERS, "new_order", {}) == 0


# ============================================================================
# Publishing Tests
# ============================================================================


class TestPublish:
    async def test_publish_reaches_only_members(self, hub):
        customer = await connect_as(hub, "customer-token")
        other = await connect_as(hub, "other-customer-token")
        await hub.subscribe_to_orders(customer)
        await hub.subscribe_to_orders(other)

        delivered = await hub.publish(
            customer_topic(CUSTOMER.user_id), "order_status_update", {"order_id": "o-1"}
        )

        assert delivered == 1
        assert customer.drain() == [
            {"event": "order_status_update", "data": {"order_id": "o-1"}}
        ]
        assert other.drain() == []

    async def test_events_arrive_in_publish_order(self, hub):
        connection = await connect_as(hub, "admin-token")
        await hub.subscribe_to_orders(connection)

        for n in range(3):
            await hub.publish(ADMIN_ORDERS, "new_order", {"n": n})

        assert [e["data"]["n"] for e in connection.drain()] == [0, 1, 2]

    async def test_publish_without_members(self, hub):
        assert await hub.publish("customer_nobody", "order_assigned", {}) == 0

    async def test_full_outbox_drops_events(self, hub):
        connection = await connect_as(hub, "admin-token")
        await hub.subscribe_to_orders(connection)

        results = [await hub.publish(ADMIN_ORDERS, "new_order", {"n": n}) for n in range(5)]

        assert results == [1, 1, 1, 0, 0]
        assert connection.dropped == 2
        assert [e["data"]["n"] for e in connection.drain()] == [0, 1, 2]

    async def test_broadcast(self, hub):
        first = await connect_as(hub, "customer-token")
        anonymous = await hub.connect()

        assert await hub.broadcast("system_alert", {"message": "Maintenance"}) == 2
        assert first.drain()[0]["event"] == "system_alert"
        assert anonymous.drain()[0]["data"] == {"message": "Maintenance"}


# ============================================================================
# Registry Tests
# ============================================================================


class TestRegistry:
    async def test_disconnect_is_idempotent(self, hub):
        connection = await connect_as(hub, "courier-token")
        await hub.subscribe_to_orders(connection)

        await hub.disconnect(connection)
        await hub.disconnect(connection)

        assert hub.connection_count == 0
        assert connection.topics == set()
        assert await hub.publish(delivery_topic(COURIER.user_id), "new_assignment", {}) == 0

    async def test_authenticate_after_disconnect(self, hub):
        connection = await hub.connect()
        await hub.disconnect(connection)

        with pytest.raises(AuthError, match="closed"):
            await hub.authenticate(connection, "customer-token")

    async def test_connected_users(self, hub):
        await connect_as(hub, "courier-token")
        await connect_as(hub, "courier-token")
        await connect_as(hub, "admin-token")
        await hub.connect()

        users = await hub.connected_users()

        assert {identity.user_id for identity in users} == {COURIER.user_id, ADMIN.user_id}
        assert await hub.connected_users_by_role(Role.ADMIN) == [ADMIN]
        assert await hub.is_user_online(COURIER.user_id)
        assert not await hub.is_user_online(CUSTOMER.user_id)
        assert hub.connection_count == 4
