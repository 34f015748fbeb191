"""Async database engine and session scope for gateway records.

The GatewayDatabase object owns one engine and one session factory. It is
constructed in the application lifespan and injected into the gateway
service; tests build one over in-memory SQLite.

Usage:
    db = GatewayDatabase(settings.database_url)
    await db.create_all()
    async with db.session() as session:
        ...
    await db.dispose()
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from aetherlock_oracle.infrastructure.database.orm_models import Base
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


class GatewayDatabase:
    """Engine plus session factory."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        options: dict = {"echo": echo}
        if not database_url.startswith("sqlite"):
            options["pool_pre_ping"] = True
        self._engine = create_async_engine(database_url, **options)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("database.engine_created", dialect=self._engine.dialect.name)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.tables_created")

    async def ping(self) -> bool:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        await self._engine.dispose()
        logger.info("database.engine_disposed")
