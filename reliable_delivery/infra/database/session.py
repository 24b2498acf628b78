"""Database engine and session management.

Engines are built from ``DatabaseSettings``: psycopg3 async against
PostgreSQL in production, aiosqlite for local runs and tests. Nothing is
created at import time; the composition root owns the engine.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from reliable_delivery.core.database.base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from reliable_delivery.core.settings.db import DatabaseSettings

logger = logging.getLogger(__name__)


def _register_models() -> None:
    """Import the mapped models so they are part of ``Base.metadata``."""
    from reliable_delivery.infra.events.inbox import models as inbox_models
    from reliable_delivery.infra.events.outbox import models as outbox_models

    _ = inbox_models, outbox_models


def create_engine_from_settings(db_settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured database.

    Example:
        engine = create_engine_from_settings(get_db_settings())
    """
    engine = create_async_engine(db_settings.url, **db_settings.sqlalchemy_engine_kwargs())
    logger.debug(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "driver": engine.dialect.driver},
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by repositories and the processor.

    Objects stay usable after commit (``expire_on_commit=False``).
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Transactional session scope: commit on success, roll back on error.

    Example:
        async with session_scope(session_factory) as session:
            shipment = Shipment(...)
            session.add(shipment)
            await outbox.append(session, "shipment.created", {"id": shipment.id})
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create the outbox and inbox tables if they do not exist.

    Intended for local runs and tests. Deployed databases use Alembic.
    """
    _register_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", extra={"tables": sorted(Base.metadata.tables)})


async def drop_tables(engine: AsyncEngine) -> None:
    """Drop the outbox and inbox tables."""
    _register_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Database tables dropped")


async def check_connection(engine: AsyncEngine) -> None:
    """Run ``SELECT 1``.

    Raises:
        sqlalchemy.exc.OperationalError: If the database cannot be reached.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"dialect": engine.dialect.name, "error": str(e)},
        )
        raise
    logger.info(
        "Database connection established successfully",
        extra={"dialect": engine.dialect.name},
    )


__all__ = [
    "check_connection",
    "create_engine_from_settings",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
]
