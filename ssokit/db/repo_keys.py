"""Database operations for signing key management."""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.crypto.types import KeyStatus
from ssokit.db.models_keys import SigningKeyEntity


async def get_active_key(
    session: AsyncSession,
) -> SigningKeyEntity | None:
    """Return the currently active signing key."""
    stmt = select(SigningKeyEntity).where(
        SigningKeyEntity.status == KeyStatus.ACTIVE.value
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_all_keys(
    session: AsyncSession,
) -> list[SigningKeyEntity]:
    """Return every stored signing key, newest first."""
    stmt = select(SigningKeyEntity).order_by(SigningKeyEntity.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_retired_keys(session: AsyncSession) -> list[SigningKeyEntity]:
    """Return retired keys, regardless of grace period."""
    stmt = select(SigningKeyEntity).where(
        SigningKeyEntity.status == KeyStatus.RETIRED.value
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_pending_keys(session: AsyncSession) -> list[SigningKeyEntity]:
    """Return keys published but never activated."""
    stmt = select(SigningKeyEntity).where(
        SigningKeyEntity.status == KeyStatus.PENDING.value
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def store_key(
    session: AsyncSession, entity: SigningKeyEntity
) -> SigningKeyEntity:
    """Persist a new signing key."""
    session.add(entity)
    await session.flush()
    return entity


async def swap_active_key(
    session: AsyncSession, new_kid: str, now: datetime
) -> None:
    """Retire the active key, then activate ``new_kid``.

    The two statements run in order inside the caller's transaction so the
    single-active index is never violated.
    """
    await session.execute(
        update(SigningKeyEntity)
        .where(SigningKeyEntity.status == KeyStatus.ACTIVE.value)
        .values(status=KeyStatus.RETIRED.value, retired_at=now)
    )
    await session.execute(
        update(SigningKeyEntity)
        .where(SigningKeyEntity.kid == new_kid)
        .values(status=KeyStatus.ACTIVE.value, activated_at=now)
    )
    await session.flush()


async def delete_keys(session: AsyncSession, kids: Sequence[str]) -> None:
    """Remove the given keys from storage."""
    if not kids:
        return
    await session.execute(
        delete(SigningKeyEntity).where(SigningKeyEntity.kid.in_(list(kids)))
    )
    await session.flush()
