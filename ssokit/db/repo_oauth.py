"""Repository for OAuth clients, refresh tokens, and revoked token ids."""

from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.crypto.password import hash_password, verify_password
from ssokit.db.models_oauth import (
    OAuthClientEntity,
    RefreshTokenEntity,
    RevokedTokenEntity,
)


class ClientUpsertData(BaseModel):
    """Parameters for registering or updating a client."""

    client_id: str
    client_name: str | None = None
    client_secret: str | None = None
    allowed_scopes: list[str] | None = None
    allowed_grant_types: list[str] | None = None
    allowed_audiences: list[str] | None = None
    is_active: bool | None = None


async def get_client(session: AsyncSession, client_id: str) -> OAuthClientEntity | None:
    """Look up an active OAuth client by ID."""
    stmt = select(OAuthClientEntity).where(
        OAuthClientEntity.id == client_id,
        OAuthClientEntity.is_active.is_(True),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def authenticate_client(
    session: AsyncSession, client_id: str, client_secret: str
) -> OAuthClientEntity | None:
    """Return the client if the secret matches, else None."""
    client = await get_client(session, client_id)
    if client is None:
        return None
    if not verify_password(client_secret, client.client_secret_hash):
        return None
    return client


async def create_client(
    session: AsyncSession, data: ClientUpsertData
) -> OAuthClientEntity:
    """Register a new client; ``data.client_secret`` must be set."""
    entity = OAuthClientEntity(
        id=data.client_id,
        client_name=data.client_name or data.client_id,
        client_secret_hash=hash_password(data.client_secret or ""),
        allowed_scopes=data.allowed_scopes or [],
        allowed_grant_types=data.allowed_grant_types or ["client_credentials"],
        allowed_audiences=data.allowed_audiences or [],
        is_active=True if data.is_active is None else data.is_active,
    )
    session.add(entity)
    await session.flush()
    return entity


async def update_client(
    session: AsyncSession, data: ClientUpsertData
) -> OAuthClientEntity | None:
    """Apply an admin update to an existing client (active or not)."""
    entity = await session.get(OAuthClientEntity, data.client_id)
    if entity is None:
        return None
    if data.client_name is not None:
        entity.client_name = data.client_name
    if data.client_secret is not None:
        entity.client_secret_hash = hash_password(data.client_secret)
    if data.allowed_scopes is not None:
        entity.allowed_scopes = data.allowed_scopes
    if data.allowed_grant_types is not None:
        entity.allowed_grant_types = data.allowed_grant_types
    if data.allowed_audiences is not None:
        entity.allowed_audiences = data.allowed_audiences
    if data.is_active is not None:
        entity.is_active = data.is_active
    await session.flush()
    return entity


async def store_refresh_token(
    session: AsyncSession, entity: RefreshTokenEntity
) -> RefreshTokenEntity:
    session.add(entity)
    await session.flush()
    return entity


async def get_refresh_token(
    session: AsyncSession, token_hash: str
) -> RefreshTokenEntity | None:
    """Look up a refresh token record by the hash of its raw value."""
    stmt = select(RefreshTokenEntity).where(RefreshTokenEntity.token_hash == token_hash)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def consume_refresh_token(session: AsyncSession, record_id: str) -> bool:
    """Mark a refresh token revoked unless another caller already did.

    Returns ``True`` only for the one caller whose conditional update
    flipped the row, so concurrent redemptions cannot both succeed.
    """
    result = await session.execute(
        update(RefreshTokenEntity)
        .where(
            RefreshTokenEntity.id == record_id,
            RefreshTokenEntity.revoked.is_(False),
        )
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def add_revoked_jti(
    session: AsyncSession, jti: str, expires_at: datetime
) -> None:
    """Record a revoked ``jti``; re-revoking is a no-op."""
    if await session.get(RevokedTokenEntity, jti) is not None:
        return
    session.add(RevokedTokenEntity(jti=jti, expires_at=expires_at))
    await session.flush()


async def is_jti_revoked(session: AsyncSession, jti: str) -> bool:
    return await session.get(RevokedTokenEntity, jti) is not None


async def delete_expired_revocations(session: AsyncSession, now: datetime) -> int:
    """Drop revocation entries whose tokens have expired anyway."""
    result = await session.execute(
        delete(RevokedTokenEntity).where(RevokedTokenEntity.expires_at < now)
    )
    await session.flush()
    return result.rowcount or 0
