"""
Pytest configuration and shared test fixtures.

This module provides the test environment, a file-backed SQLite database per
test, user factories, the real-time hub and an HTTP client wired to the
application with its database dependencies overridden.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-the-deliveryhub-suite")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from typing import AsyncGenerator, Awaitable, Callable, Optional
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from deliveryhub.api.deps import make_authenticator
from deliveryhub.core.security import Actor, CredentialService
from deliveryhub.database.connection import (
    create_engine,
    create_session_factory,
    get_db,
    get_session_factory,
)
from deliveryhub.database.models import Base, User
from deliveryhub.services.notifications.dispatcher import NotificationDispatcher
from deliveryhub.services.orders.enums import Role
from deliveryhub.services.orders.service import OrderService
from deliveryhub.services.realtime.hub import RealtimeHub
from deliveryhub.services.users.repository import UserRepository

UserFactory = Callable[..., Awaitable[User]]


# ============================================================================
# Database Fixtures
# ============================================================================


def sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a fresh SQLite database with the full schema.

    Yields:
        AsyncEngine: Engine bound to a per-test database file
    """
    engine = create_engine(sqlite_url(tmp_path / "deliveryhub.db"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# User Fixtures
# ============================================================================


def actor_of(user: User) -> Actor:
    """Actor view of a persisted user."""
    return Actor(id=user.id, role=user.role, name=user.name)


@pytest.fixture
def user_factory(session_factory: async_sessionmaker[AsyncSession]) -> UserFactory:
    """
    Factory persisting users in their own committed session.

    Example:
        courier = await user_factory(Role.DELIVERY, name="Dana")
    """

    async def make(
        role: Role = Role.CUSTOMER,
        *,
        name: Optional[str] = None,
        is_active: bool = True,
        is_available: bool = True,
    ) -> User:
        async with session_factory() as session:
            user = await UserRepository(session).create(
                name=name or f"{role.value.title()} {uuid4().hex[:6]}",
                email=f"{uuid4().hex[:12]}@example.com",
                role=role,
                is_active=is_active,
                is_available=is_available,
            )
            await session.commit()
            return user

    return make


@pytest.fixture
async def customer(user_factory: UserFactory) -> User:
    return await user_factory(Role.CUSTOMER, name="Casey Customer")


@pytest.fixture
async def other_customer(user_factory: UserFactory) -> User:
    return await user_factory(Role.CUSTOMER, name="Olive Other")


@pytest.fixture
async def courier(user_factory: UserFactory) -> User:
    return await user_factory(Role.DELIVERY, name="Dana Driver")


@pytest.fixture
async def other_courier(user_factory: UserFactory) -> User:
    return await user_factory(Role.DELIVERY, name="Riley Rider")


@pytest.fixture
async def admin(user_factory: UserFactory) -> User:
    return await user_factory(Role.ADMIN, name="Avery Admin")


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def credentials() -> CredentialService:
    return CredentialService()


@pytest.fixture
def hub(
    session_factory: async_sessionmaker[AsyncSession],
    credentials: CredentialService,
) -> RealtimeHub:
    return RealtimeHub(make_authenticator(session_factory, credentials), outbox_size=50)


@pytest.fixture
def dispatcher(hub: RealtimeHub) -> NotificationDispatcher:
    return NotificationDispatcher(hub)


@pytest.fixture
def order_service(db_session: AsyncSession, dispatcher: NotificationDispatcher) -> OrderService:
    return OrderService(db_session, dispatcher)


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    hub: RealtimeHub,
):
    """
    Application wired to the per-test database and hub.

    Yields:
        FastAPI: Application with dependency overrides installed
    """
    from deliveryhub.main import app as application

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    application.state.hub = hub

    yield application

    application.dependency_overrides.clear()
    application.state.hub = None


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous test client for the application.

    Yields:
        AsyncClient: Client sending requests through the ASGI transport
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers(credentials: CredentialService) -> Callable[[User], dict[str, str]]:
    """Build bearer headers for a user."""

    def build(user: User) -> dict[str, str]:
        token = credentials.issue_credential(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}

    return build
