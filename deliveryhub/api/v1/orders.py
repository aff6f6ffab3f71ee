"""
Order management API endpoints.

This module implements the FastAPI router for the delivery order lifecycle:
placement, listing, assignment, status advancement, courier location
reports, cancellation and per-role statistics. Domain errors raised by the
order service propagate to the application exception handler, which renders
them with their status code.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from deliveryhub.api.deps import CurrentActor, OrderServiceDep, limiter
from deliveryhub.core.config import get_settings
from deliveryhub.core.logging import get_logger
from deliveryhub.schemas.orders import (
    Coordinates,
    LocationAckResponse,
    LocationUpdateRequest,
    OrderAssignRequest,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderDetailResponse,
    OrderEnvelope,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdateRequest,
)
from deliveryhub.services.orders.enums import OrderStatus

logger = get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
    description="Place a pending delivery order for the authenticated customer",
)
@limiter.limit(settings.order_create_rate_limit)
async def create_order(
    request: Request,
    payload: OrderCreateRequest,
    actor: CurrentActor,
    service: OrderServiceDep,
) -> OrderEnvelope:
    """
    Create a delivery order.

    Args:
        request: Incoming request, used for rate limiting
        payload: Order creation request
        actor: Authenticated customer
        service: Order service

    Returns:
        OrderEnvelope: Created order with confirmation message
    """
    logger.info("Creating order", user_id=str(actor.id), priority=payload.priority.value)

    order = await service.create_order(
        actor,
        pickup_address=payload.pickup_address,
        drop_address=payload.drop_address,
        item_description=payload.item_description,
        pickup_coords=payload.pickup_coords.model_dump() if payload.pickup_coords else None,
        drop_coords=payload.drop_coords.model_dump() if payload.drop_coords else None,
        priority=payload.priority,
        delivery_instructions=payload.delivery_instructions,
    )

    logger.info("Order created", order_id=str(order.id), order_number=order.order_number)
    return OrderEnvelope(
        message="Order created successfully",
        order=OrderResponse.model_validate(order),
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="List the orders visible to the authenticated user, newest first",
)
async def list_orders(
    actor: CurrentActor,
    service: OrderServiceDep,
    status_filter: Optional[list[OrderStatus]] = Query(
        None,
        alias="status",
        description="Only include orders in these statuses",
    ),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(
        settings.default_page_size,
        ge=1,
        le=settings.max_page_size,
        description="Page size",
    ),
) -> OrderListResponse:
    orders = await service.list_orders(actor, statuses=status_filter, page=page, limit=limit)

    logger.debug(
        "Orders listed",
        user_id=str(actor.id),
        count=len(orders),
        page=page,
        limit=limit,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        page=page,
        limit=limit,
    )


@router.get(
    "/stats/overview",
    response_model=OrderStatsResponse,
    summary="Order statistics",
    description="Role-specific order counts for the authenticated user",
)
async def get_order_stats(
    actor: CurrentActor,
    service: OrderServiceDep,
) -> OrderStatsResponse:
    return OrderStatsResponse(stats=await service.get_order_stats(actor))


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order",
    description="Retrieve a single order with its status history",
)
async def get_order(
    order_id: UUID,
    actor: CurrentActor,
    service: OrderServiceDep,
) -> OrderDetailResponse:
    order = await service.get_order(actor, order_id)
    return OrderDetailResponse(order=OrderResponse.model_validate(order))


@router.put(
    "/{order_id}/assign",
    response_model=OrderEnvelope,
    summary="Assign order",
    description="Assign a pending order to an available delivery person (admin only)",
)
async def assign_order(
    order_id: UUID,
    payload: OrderAssignRequest,
    actor: CurrentActor,
    service: OrderServiceDep,
) -> OrderEnvelope:
    logger.info(
        "Assigning order",
        order_id=str(order_id),
        delivery_person_id=str(payload.delivery_person_id),
        admin_id=str(actor.id),
    )

    order = await service.assign_order(
        actor,
        order_id,
        payload.delivery_person_id,
        notes=payload.notes,
    )
    return OrderEnvelope(
        message="Order assigned successfully",
        order=OrderResponse.model_validate(order),
    )


@router.put(
    "/{order_id}/status",
    response_model=OrderEnvelope,
    summary="Update order status",
    description="Mark an assigned order as picked up or delivered (assigned courier only)",
)
async def update_order_status(
    order_id: UUID,
    payload: OrderStatusUpdateRequest,
    actor: CurrentActor,
    service: OrderServiceDep,
) -> OrderEnvelope:
    """
    Advance an order through pickup and delivery.

    Returns:
        OrderEnvelope: Updated order; the message names the new status
    """
    logger.info(
        "Updating order status",
        order_id=str(order_id),
        target_status=payload.status.value,
        user_id=str(actor.id),
    )

    order = await service.update_order_status(
        actor,
        order_id,
        payload.status,
        notes=payload.notes,
    )
    return OrderEnvelope(
        message=f"Order marked as {order.status.display_name.lower()}",
        order=OrderResponse.model_validate(order),
    )


@router.put(
    "/{order_id}/location",
    response_model=LocationAckResponse,
    summary="Update delivery location",
    description="Report the courier position for an active order",
)
async def update_location(
    order_id: UUID,
    payload: LocationUpdateRequest,
    actor: CurrentActor,
    service: OrderServiceDep,
) -> LocationAckResponse:
    ack = await service.update_location(actor, order_id, payload.lat, payload.lng)
    return LocationAckResponse(
        message="Location updated successfully",
        order_id=ack.order_id,
        location=Coordinates(lat=ack.lat, lng=ack.lng),
        timestamp=ack.timestamp,
    )


@router.put(
    "/{order_id}/cancel",
    response_model=OrderEnvelope,
    summary="Cancel order",
    description="Cancel a pending order (owning customer only)",
)
async def cancel_order(
    order_id: UUID,
    actor: CurrentActor,
    service: OrderServiceDep,
    payload: Optional[OrderCancelRequest] = None,
) -> OrderEnvelope:
    logger.info("Cancelling order", order_id=str(order_id), user_id=str(actor.id))

    order = await service.cancel_order(
        actor,
        order_id,
        reason=payload.reason if payload else None,
    )
    return OrderEnvelope(
        message="Order cancelled successfully",
        order=OrderResponse.model_validate(order),
    )
