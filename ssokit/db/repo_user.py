"""User repository for credential lookups."""

import uuid_utils
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.core.clock import utcnow
from ssokit.crypto.password import hash_password, verify_password
from ssokit.db.models_user import UserEntity


class UserCreateData(BaseModel):
    """Parameters for creating a user."""

    username: str
    password: str
    user_id: str | None = None
    scopes: list[str] | None = None


async def get_user_by_username(
    session: AsyncSession, username: str
) -> UserEntity | None:
    """Look up a user by username (case-insensitive)."""
    stmt = select(UserEntity).where(UserEntity.username == username.lower())
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str) -> UserEntity | None:
    """Look up a user by primary key."""
    return await session.get(UserEntity, user_id)


async def create_user(session: AsyncSession, data: UserCreateData) -> UserEntity:
    user = UserEntity(
        id=data.user_id or str(uuid_utils.uuid7()),
        username=data.username.lower(),
        credential_hash=hash_password(data.password),
        scopes=data.scopes or [],
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


async def verify_credentials(
    session: AsyncSession, username: str, password: str
) -> UserEntity | None:
    """Authenticate an active user by username and password."""
    user = await get_user_by_username(session, username)
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.credential_hash):
        return None
    user.last_login = utcnow()
    await session.flush()
    return user
