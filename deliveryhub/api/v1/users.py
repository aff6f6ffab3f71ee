"""
User profile, delivery personnel and account management endpoints.

Every user may read and edit their own profile and read their statistics.
Delivery personnel toggle their availability. Admins list accounts, review
courier performance, and deactivate or reactivate accounts.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from deliveryhub.api.deps import (
    CurrentAdmin,
    CurrentDeliveryPerson,
    CurrentUser,
    DatabaseSession,
    UserServiceDep,
)
from deliveryhub.core.config import get_settings
from deliveryhub.core.logging import get_logger
from deliveryhub.schemas.users import (
    AccountStatusResponse,
    AvailabilityUpdateRequest,
    DeliveryPerformance,
    DeliveryPerformanceResponse,
    DeliveryPersonnelListResponse,
    DeliveryPersonResponse,
    ProfileEnvelope,
    ProfileUpdateRequest,
    UserListResponse,
    UserResponse,
    UserStatsResponse,
)
from deliveryhub.services.orders.enums import Role
from deliveryhub.services.users.repository import UserRepository

logger = get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/users", tags=["users"])

USER_PAGE_SIZE = 20


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user profile",
)
async def get_me(current_user: CurrentUser) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.put(
    "/profile",
    response_model=ProfileEnvelope,
    summary="Update profile",
    description="Change the display name, phone number or postal address",
)
async def update_profile(
    payload: ProfileUpdateRequest,
    current_user: CurrentUser,
    service: UserServiceDep,
) -> ProfileEnvelope:
    """
    Update the caller's own profile.

    Only fields present in the request body change; ``phone`` or
    ``address`` sent as null are cleared.

    Args:
        payload: Profile changes
        current_user: Authenticated user
        service: User service

    Returns:
        ProfileEnvelope: Confirmation and the updated profile
    """
    changes = payload.model_dump(include=payload.model_fields_set)
    user = await service.update_profile(current_user, changes)
    return ProfileEnvelope(
        message="Profile updated successfully",
        user=UserResponse.model_validate(user),
    )


@router.get(
    "/stats",
    response_model=UserStatsResponse,
    summary="User statistics",
    description="Role-specific order and account counts for the authenticated user",
)
async def get_user_stats(current_user: CurrentUser, service: UserServiceDep) -> UserStatsResponse:
    return UserStatsResponse(stats=await service.get_user_stats(current_user))


@router.get(
    "/all",
    response_model=UserListResponse,
    summary="List users",
    description="Paginated account listing, newest first (admin only)",
)
async def list_users(
    current_user: CurrentAdmin,
    service: UserServiceDep,
    role: Optional[Role] = Query(None, description="Only users with this role"),
    is_active: Optional[bool] = Query(None, description="Filter on account status"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(USER_PAGE_SIZE, ge=1, le=settings.max_page_size, description="Page size"),
) -> UserListResponse:
    """
    List accounts for admins.

    Args:
        current_user: Authenticated admin
        service: User service
        role: Optional role filter
        is_active: Optional account status filter
        page: Page number, from 1
        limit: Page size

    Returns:
        UserListResponse: The page of users with pagination totals
    """
    users, total, pages = await service.list_users(
        role=role,
        is_active=is_active,
        page=page,
        limit=limit,
    )
    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in users],
        page=page,
        limit=limit,
        total=total,
        pages=pages,
    )


@router.get(
    "/delivery-personnel",
    response_model=DeliveryPersonnelListResponse,
    summary="List available delivery personnel",
    description="Active, available delivery personnel ordered by rating (admin only)",
)
async def list_delivery_personnel(
    current_user: CurrentAdmin,
    db: DatabaseSession,
) -> DeliveryPersonnelListResponse:
    couriers = await UserRepository(db).list_available_delivery_personnel()
    return DeliveryPersonnelListResponse(
        delivery_personnel=[DeliveryPersonResponse.model_validate(user) for user in couriers]
    )


@router.get(
    "/delivery-performance",
    response_model=DeliveryPerformanceResponse,
    summary="Delivery performance",
    description="Assignment counts and completion rate per courier (admin only)",
)
async def get_delivery_performance(
    current_user: CurrentAdmin,
    service: UserServiceDep,
) -> DeliveryPerformanceResponse:
    """Couriers ordered by completed deliveries, busiest first."""
    rows = await service.delivery_performance()
    return DeliveryPerformanceResponse(
        performance=[DeliveryPerformance(**row) for row in rows]
    )


@router.put(
    "/availability",
    response_model=DeliveryPersonResponse,
    summary="Update availability",
    description="Toggle whether the delivery person accepts new assignments",
)
async def update_availability(
    payload: AvailabilityUpdateRequest,
    current_user: CurrentDeliveryPerson,
    db: DatabaseSession,
) -> DeliveryPersonResponse:
    user = await UserRepository(db).set_availability(current_user.id, payload.is_available)
    await db.commit()

    logger.info(
        "Delivery availability updated",
        user_id=str(user.id),
        is_available=user.is_available,
    )
    return DeliveryPersonResponse.model_validate(user)


@router.put(
    "/{user_id}/deactivate",
    response_model=AccountStatusResponse,
    summary="Deactivate account",
    description="Block an account from signing in and from assignments (admin only)",
)
async def deactivate_user(
    user_id: UUID,
    current_user: CurrentAdmin,
    service: UserServiceDep,
) -> AccountStatusResponse:
    """
    Deactivate an account.

    Admin accounts cannot be deactivated.

    Args:
        user_id: Account to deactivate
        current_user: Authenticated admin
        service: User service

    Returns:
        AccountStatusResponse: Confirmation and the updated account
    """
    user = await service.set_active(user_id, False)
    logger.info("User deactivated by admin", user_id=str(user_id), admin_id=str(current_user.id))
    return AccountStatusResponse(
        message="User account deactivated successfully",
        user=UserResponse.model_validate(user),
    )


@router.put(
    "/{user_id}/activate",
    response_model=AccountStatusResponse,
    summary="Activate account",
    description="Restore a deactivated account (admin only)",
)
async def activate_user(
    user_id: UUID,
    current_user: CurrentAdmin,
    service: UserServiceDep,
) -> AccountStatusResponse:
    user = await service.set_active(user_id, True)
    logger.info("User activated by admin", user_id=str(user_id), admin_id=str(current_user.id))
    return AccountStatusResponse(
        message="User account activated successfully",
        user=UserResponse.model_validate(user),
    )
