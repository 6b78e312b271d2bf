"""Async SQLAlchemy engine, session management, and storage failure mapping."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ssokit.core.errors import StorageUnavailableError
from ssokit.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def create_session_factory(
    db: DatabaseSettings | None = None,
) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory for the configured database."""
    db = db or DatabaseSettings()
    engine = create_async_engine(
        db.async_url,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
    )
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def storage_guard(timeout: float | None) -> AsyncIterator[None]:
    """Bound a storage call and report failures as ``StorageUnavailableError``."""
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as exc:
        logger.warning("Storage call exceeded %ss", timeout)
        raise StorageUnavailableError("storage timed out") from exc
    except (OperationalError, PoolTimeoutError) as exc:
        logger.warning("Storage call failed: %s", exc)
        raise StorageUnavailableError("storage unavailable") from exc


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session from the app's factory."""
    factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
