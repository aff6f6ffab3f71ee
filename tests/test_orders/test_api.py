"""
Integration tests for order management API endpoints.

Requests go through the ASGI app with the database dependencies pointed at
the per-test SQLite file, covering authentication, role checks, error
envelopes and the full order workflow.
"""

from uuid import uuid4

import pytest
from fastapi import status

from deliveryhub.services.orders.enums import Role

API = "/api/v1/orders"


def order_payload(**overrides) -> dict:
    return {
        "pickup_address": "123 Main St",
        "drop_address": "456 Oak Ave",
        "item_description": "Box",
        **overrides,
    }


@pytest.fixture
async def created_order(client, auth_headers, customer) -> dict:
    response = await client.post(API, json=order_payload(), headers=auth_headers(customer))
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()["order"]


@pytest.fixture
async def assigned_order(client, auth_headers, created_order, courier, admin) -> dict:
    response = await client.put(
        f"{API}/{created_order['id']}/assign",
        json={"delivery_person_id": str(courier.id)},
        headers=auth_headers(admin),
    )
    assert response.status_code == status.HTTP_200_OK
    return response.json()["order"]


# ============================================================================
# Authentication Tests
# ============================================================================


class TestAuthentication:
    async def test_missing_token(self, client):
        response = await client.get(API)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        body = response.json()
        assert body["error"] == "auth_error"
        assert body["message"] == "Authentication token is required"
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_invalid_token(self, client):
        response = await client.get(API, headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["message"] == "Invalid token"

    async def test_inactive_user(self, client, auth_headers, user_factory):
        inactive = await user_factory(is_active=False)

        response = await client.get(API, headers=auth_headers(inactive))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["message"] == "User not found or inactive"

    async def test_request_id_header(self, client):
        response = await client.get(API, headers={"X-Request-ID": "req-123"})

        assert response.headers["x-request-id"] == "req-123"
        assert response.json()["request_id"] == "req-123"


# ============================================================================
# Order Creation Tests
# ============================================================================


class TestCreateOrder:
    async def test_create_order(self, client, auth_headers, customer):
        response = await client.post(
            API,
            json=order_payload(
                pickup_coords={"lat": 12.97, "lng": 77.59},
                drop_coords={"lat": 12.93, "lng": 77.62},
                priority="high",
            ),
            headers=auth_headers(customer),
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["message"] == "Order created successfully"
        order = body["order"]
        assert order["status"] == "pending"
        assert order["customer_id"] == str(customer.id)
        assert order["delivery_person_id"] is None
        assert order["status_history"] == []
        assert order["priority"] == "high"
        assert order["pickup_coords"] == {"lat": 12.97, "lng": 77.59}
        assert order["estimated_delivery_time"] is not None

    async def test_courier_cannot_create(self, client, auth_headers, courier):
        response = await client.post(API, json=order_payload(), headers=auth_headers(courier))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == "forbidden"

    @pytest.mark.parametrize(
        "payload",
        [
            order_payload(pickup_address=""),
            order_payload(drop_address="   "),
            {"pickup_address": "123 Main St", "drop_address": "456 Oak Ave"},
            order_payload(priority="whenever"),
            order_payload(drop_coords={"lat": 95, "lng": 0}),
        ],
    )
    async def test_invalid_payload(self, client, auth_headers, customer, payload):
        response = await client.post(API, json=payload, headers=auth_headers(customer))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]


# ============================================================================
# Order Retrieval Tests
# ============================================================================


class TestGetOrders:
    async def test_get_own_order(self, client, auth_headers, customer, created_order):
        response = await client.get(
            f"{API}/{created_order['id']}", headers=auth_headers(customer)
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["order"]["id"] == created_order["id"]

    async def test_order_embeds_customer_and_courier(
        self, client, auth_headers, admin, customer, courier, created_order, assigned_order
    ):
        assert created_order["customer"]["name"] == "Casey Customer"
        assert created_order["delivery_person"] is None

        response = await client.get(
            f"{API}/{assigned_order['id']}", headers=auth_headers(admin)
        )

        order = response.json()["order"]
        assert order["customer"] == {
            "id": str(customer.id),
            "name": "Casey Customer",
            "email": customer.email,
            "phone": None,
        }
        assert order["delivery_person"]["name"] == "Dana Driver"
        assert order["delivery_person"]["email"] == courier.email

    async def test_get_foreign_order(self, client, auth_headers, other_customer, created_order):
        response = await client.get(
            f"{API}/{created_order['id']}", headers=auth_headers(other_customer)
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_get_missing_order(self, client, auth_headers, admin):
        response = await client.get(f"{API}/{uuid4()}", headers=auth_headers(admin))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"] == "not_found"

    async def test_list_with_filters(self, client, auth_headers, customer, admin, assigned_order):
        await client.post(API, json=order_payload(), headers=auth_headers(customer))

        response = await client.get(
            API, params={"status": "assigned", "limit": 5}, headers=auth_headers(admin)
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert [o["id"] for o in body["orders"]] == [assigned_order["id"]]
        assert body["page"] == 1
        assert body["limit"] == 5

    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}])
    async def test_list_invalid_pagination(self, client, auth_headers, customer, params):
        response = await client.get(API, params=params, headers=auth_headers(customer))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_stats(self, client, auth_headers, customer, created_order):
        response = await client.get(f"{API}/stats/overview", headers=auth_headers(customer))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["stats"] == {
            "total_orders": 1,
            "pending": 1,
            "in_progress": 0,
            "delivered": 0,
            "cancelled": 0,
        }


# ============================================================================
# Workflow Tests
# ============================================================================


class TestOrderWorkflow:
    async def test_assign_requires_admin(self, client, auth_headers, customer, courier, created_order):
        response = await client.put(
            f"{API}/{created_order['id']}/assign",
            json={"delivery_person_id": str(courier.id)},
            headers=auth_headers(customer),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_assign_unavailable_courier(
        self, client, auth_headers, admin, user_factory, created_order
    ):
        busy = await user_factory(Role.DELIVERY, is_available=False)

        response = await client.put(
            f"{API}/{created_order['id']}/assign",
            json={"delivery_person_id": str(busy.id)},
            headers=auth_headers(admin),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["message"] == "Delivery person is not available"

    async def test_full_delivery(self, client, auth_headers, courier, customer, assigned_order):
        order_id = assigned_order["id"]
        assert assigned_order["status"] == "assigned"
        assert assigned_order["delivery_person_id"] == str(courier.id)

        location = await client.put(
            f"{API}/{order_id}/location",
            json={"lat": 12.95, "lng": 77.6},
            headers=auth_headers(courier),
        )
        assert location.status_code == status.HTTP_200_OK
        assert location.json()["message"] == "Location updated successfully"
        assert location.json()["location"] == {"lat": 12.95, "lng": 77.6}

        picked_up = await client.put(
            f"{API}/{order_id}/status",
            json={"status": "picked-up"},
            headers=auth_headers(courier),
        )
        assert picked_up.status_code == status.HTTP_200_OK
        assert picked_up.json()["message"] == "Order marked as picked up"

        delivered = await client.put(
            f"{API}/{order_id}/status",
            json={"status": "delivered", "notes": "Handed over"},
            headers=auth_headers(courier),
        )
        assert delivered.status_code == status.HTTP_200_OK
        assert delivered.json()["message"] == "Order marked as delivered"
        order = delivered.json()["order"]
        assert [h["status"] for h in order["status_history"]] == [
            "assigned",
            "picked-up",
            "delivered",
        ]
        assert order["current_location"] == {"lat": 12.95, "lng": 77.6}

        view = await client.get(f"{API}/{order_id}", headers=auth_headers(customer))
        assert view.json()["order"]["status"] == "delivered"

    async def test_deliver_before_pickup(self, client, auth_headers, courier, assigned_order):
        response = await client.put(
            f"{API}/{assigned_order['id']}/status",
            json={"status": "delivered"},
            headers=auth_headers(courier),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "invalid_transition"

    async def test_other_courier_location_is_forbidden(
        self, client, auth_headers, other_courier, assigned_order
    ):
        response = await client.put(
            f"{API}/{assigned_order['id']}/location",
            json={"lat": 1.0, "lng": 1.0},
            headers=auth_headers(other_courier),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_cancel(self, client, auth_headers, customer, created_order):
        url = f"{API}/{created_order['id']}/cancel"

        response = await client.put(
            url, json={"reason": "No longer needed"}, headers=auth_headers(customer)
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Order cancelled successfully"
        assert response.json()["order"]["status"] == "cancelled"

        again = await client.put(url, headers=auth_headers(customer))
        assert again.status_code == status.HTTP_400_BAD_REQUEST
        assert again.json()["error"] == "invalid_transition"

    async def test_courier_is_notified_of_assignment(
        self, client, auth_headers, hub, credentials, courier, admin, created_order
    ):
        connection = await hub.connect()
        await hub.authenticate(connection, credentials.issue_credential(courier.id, courier.role))
        await hub.subscribe_to_orders(connection)

        await client.put(
            f"{API}/{created_order['id']}/assign",
            json={"delivery_person_id": str(courier.id)},
            headers=auth_headers(admin),
        )

        events = connection.drain()
        assert [e["event"] for e in events] == ["new_assignment"]
        assert events[0]["data"]["order_id"] == created_order["id"]
