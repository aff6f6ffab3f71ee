"""
Order management Pydantic schemas for API request/response validation.

This module defines the request bodies for creating, assigning, advancing,
tracking and cancelling delivery orders, and the response shapes returned
by the orders API.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from deliveryhub.schemas.users import UserSummary
from deliveryhub.services.orders.enums import OrderStatus, Priority


class Coordinates(BaseModel):
    """Latitude/longitude pair."""

    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")


class OrderCreateRequest(BaseModel):
    """Request schema for placing a delivery order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    pickup_address: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Pickup address",
    )
    drop_address: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Drop address",
    )
    item_description: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="What is being delivered",
    )
    pickup_coords: Optional[Coordinates] = Field(
        None,
        description="Optional pickup coordinates",
    )
    drop_coords: Optional[Coordinates] = Field(
        None,
        description="Optional drop coordinates",
    )
    priority: Priority = Field(
        default=Priority.NORMAL,
        description="Delivery priority",
    )
    delivery_instructions: Optional[str] = Field(
        None,
        max_length=500,
        description="Instructions for the delivery person",
    )


class OrderAssignRequest(BaseModel):
    """Request schema for assigning an order to a delivery person."""

    delivery_person_id: UUID = Field(..., description="Delivery person to assign")
    notes: Optional[str] = Field(None, max_length=500, description="History notes")


class OrderStatusUpdateRequest(BaseModel):
    """Request schema for a delivery person advancing an order."""

    status: OrderStatus = Field(..., description="Target status (picked-up or delivered)")
    notes: Optional[str] = Field(None, max_length=500, description="History notes")


class LocationUpdateRequest(BaseModel):
    """Request schema for a courier position report."""

    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")


class OrderCancelRequest(BaseModel):
    """Request schema for cancelling a pending order."""

    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


class StatusHistoryResponse(BaseModel):
    """One status history entry."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    status: OrderStatus
    timestamp: datetime
    updated_by: UUID
    notes: Optional[str] = None


class OrderResponse(BaseModel):
    """Response schema for a delivery order."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: UUID
    delivery_person_id: Optional[UUID] = None
    customer: Optional[UserSummary] = None
    delivery_person: Optional[UserSummary] = None
    pickup_address: str
    drop_address: str
    item_description: str
    pickup_coords: Optional[Coordinates] = None
    drop_coords: Optional[Coordinates] = None
    priority: Priority
    delivery_instructions: Optional[str] = None
    status: OrderStatus
    status_history: list[StatusHistoryResponse] = Field(default_factory=list)
    current_location: Optional[Coordinates] = None
    last_location_update: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_pickup_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderEnvelope(BaseModel):
    """Mutation response carrying a message and the updated order."""

    message: str
    order: OrderResponse


class OrderDetailResponse(BaseModel):
    order: OrderResponse


class OrderListResponse(BaseModel):
    """Paginated order listing."""

    orders: list[OrderResponse]
    page: int
    limit: int


class LocationAckResponse(BaseModel):
    """Acknowledgement of a courier position report."""

    message: str
    order_id: UUID
    location: Coordinates
    timestamp: datetime


class OrderStatsResponse(BaseModel):
    """Role-specific order counts."""

    stats: dict[str, int]
