"""
Alembic environment for DeliveryHub.

The database URL comes from application settings (APP_DATABASE_URL) when
set, falling back to ``sqlalchemy.url`` in alembic.ini. Online migrations
run on an async engine; SQLite uses batch mode for ALTER support.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from deliveryhub.core.config import get_settings
from deliveryhub.core.logging import get_logger
from deliveryhub.database.base import Base
from deliveryhub.database.connection import convert_database_url_to_async

# Registers the tables on Base.metadata for autogenerate
from deliveryhub.database.models import Order, OrderStatusHistory, User  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = get_logger(__name__)
target_metadata = Base.metadata

COMPARE_OPTIONS = {"compare_type": True, "compare_server_default": True}


def resolve_url() -> str:
    """Settings win over alembic.ini."""
    configured = get_settings().database_url
    url = convert_database_url_to_async(configured) if configured else None
    url = url or config.get_main_option("sqlalchemy.url")
    if not url:
        raise ValueError("No database URL configured for migrations")
    return url


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout without connecting."""
    url = resolve_url()
    logger.info("Rendering offline migrations", dialect=url.split("://")[0])

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def apply_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
        transaction_per_migration=True,
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_async() -> None:
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = resolve_url()

    engine = async_engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(apply_migrations)
    except Exception as exc:
        logger.error("Migration failed", error=str(exc), error_type=type(exc).__name__)
        raise
    finally:
        await engine.dispose()

    logger.info("Migrations applied", dialect=engine.dialect.name)


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_async())
