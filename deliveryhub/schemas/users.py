"""
User Pydantic schemas for API request/response validation.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deliveryhub.services.orders.enums import Role


class UserSummary(BaseModel):
    """Contact details embedded in order responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: Optional[str] = None


class UserResponse(BaseModel):
    """Public profile of a user."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role
    is_active: bool
    created_at: datetime


class DeliveryPersonResponse(UserResponse):
    """Delivery person profile with availability and counters."""

    is_available: bool
    rating: float
    total_deliveries: int
    completed_deliveries: int


class DeliveryPersonnelListResponse(BaseModel):
    delivery_personnel: list[DeliveryPersonResponse]


class AvailabilityUpdateRequest(BaseModel):
    """Request schema for toggling delivery availability."""

    is_available: bool = Field(..., description="Accept new assignments")


class ProfileUpdateRequest(BaseModel):
    """
    Profile changes. ``name`` is required; ``phone`` and ``address`` are
    left untouched when omitted and cleared when sent as null.
    """

    name: str = Field(..., max_length=100, description="Display name")
    phone: Optional[str] = Field(None, max_length=32, description="Contact phone number")
    address: Optional[str] = Field(None, max_length=500, description="Postal address")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        name = v.strip()
        if len(name) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return name


class ProfileEnvelope(BaseModel):
    message: str
    user: UserResponse


class UserListResponse(BaseModel):
    """Paginated user listing for admins."""

    users: list[UserResponse]
    page: int
    limit: int
    total: int
    pages: int


class AccountStatusResponse(BaseModel):
    message: str
    user: UserResponse


class DeliveryPerformance(BaseModel):
    """Assignment counts and completion rate of one courier."""

    id: UUID
    name: str
    email: str
    rating: float
    is_available: bool
    is_active: bool
    is_online: bool = Field(False, description="Connected to this API process")
    total_orders: int
    completed_orders: int
    active_orders: int
    completion_rate: float = Field(..., description="Completed share of assigned orders, in percent")


class DeliveryPerformanceResponse(BaseModel):
    performance: list[DeliveryPerformance]


class UserStatsResponse(BaseModel):
    """Role-specific account and order counts."""

    stats: dict[str, float | int | bool]
