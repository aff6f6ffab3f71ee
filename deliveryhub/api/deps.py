"""
Request dependencies: who is calling, what they may do, and the services
that act on their behalf.

A credential names a user id; the role always comes from the database row,
so a demoted or deactivated user loses access on the next request.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deliveryhub.core.config import get_settings
from deliveryhub.core.errors import AuthError, ForbiddenError
from deliveryhub.core.logging import get_logger, set_user_id
from deliveryhub.core.security import Actor, CredentialService, get_credential_service
from deliveryhub.database.connection import get_db
from deliveryhub.database.models.user import User
from deliveryhub.services.notifications.dispatcher import NotificationDispatcher
from deliveryhub.services.orders.enums import Role
from deliveryhub.services.orders.service import OrderService
from deliveryhub.services.realtime.hub import Authenticator, RealtimeHub
from deliveryhub.services.realtime.topics import Identity
from deliveryhub.services.users.repository import UserRepository
from deliveryhub.services.users.service import UserService

logger = get_logger(__name__)

bearer = HTTPBearer(auto_error=False)

limiter = Limiter(key_func=get_remote_address, enabled=get_settings().rate_limit_enabled)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def load_active_user(session: AsyncSession, actor: Actor) -> User:
    """
    Raises:
        AuthError: If the credential's user is gone or deactivated
    """
    user = await UserRepository(session).get_by_id(actor.id)
    if user is None or not user.is_active:
        logger.warning(
            "Credential rejected",
            user_id=str(actor.id),
            reason="unknown user" if user is None else "inactive user",
        )
        raise AuthError("User not found or inactive")
    return user


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer)],
    db: DatabaseSession,
    credential_service: Annotated[CredentialService, Depends(get_credential_service)],
) -> User:
    if credentials is None:
        raise AuthError("Authentication token is required")

    user = await load_active_user(db, credential_service.verify_credential(credentials.credentials))
    set_user_id(str(user.id))
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_current_actor(current_user: CurrentUser) -> Actor:
    return Actor(id=current_user.id, role=current_user.role, name=current_user.name)


def require_role(*allowed_roles: Role):
    """
    Dependency factory admitting only users holding one of ``allowed_roles``.

    Any other authenticated user gets a 403.
    """

    async def check_role(current_user: CurrentUser) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Role check failed",
                user_id=str(current_user.id),
                role=current_user.role.value,
                allowed=[role.value for role in allowed_roles],
            )
            raise ForbiddenError("Insufficient permissions")
        return current_user

    return check_role


def get_hub(connection: HTTPConnection) -> RealtimeHub:
    return connection.app.state.hub


def get_dispatcher(hub: Annotated[RealtimeHub, Depends(get_hub)]) -> NotificationDispatcher:
    return NotificationDispatcher(hub)


def get_order_service(
    db: DatabaseSession,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
) -> OrderService:
    return OrderService(db, dispatcher)


def get_user_service(
    db: DatabaseSession,
    hub: Annotated[RealtimeHub, Depends(get_hub)],
) -> UserService:
    return UserService(db, hub)


def make_authenticator(
    session_factory: async_sessionmaker[AsyncSession],
    credential_service: CredentialService,
) -> Authenticator:
    """
    Authenticator for real-time connections.

    Each call verifies the token and then loads the user in a session of
    its own, since a socket outlives any single request.
    """

    async def authenticate(token: str) -> Identity:
        actor = credential_service.verify_credential(token)
        async with session_factory() as session:
            user = await load_active_user(session, actor)
            return Identity(user_id=user.id, role=user.role, name=user.name)

    return authenticate


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
CurrentAdmin = Annotated[User, Depends(require_role(Role.ADMIN))]
CurrentDeliveryPerson = Annotated[User, Depends(require_role(Role.DELIVERY))]
Hub = Annotated[RealtimeHub, Depends(get_hub)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
UserServiceDep = Annotated[UserService, Depends(get_user_service)]
