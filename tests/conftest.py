"""Shared test fixtures for ssokit."""

from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ssokit.core.app import create_app
from ssokit.core.settings import AuthSettings
from ssokit.db.base import BaseEntity
from ssokit.db.models_oauth import OAuthClientEntity
from ssokit.db.models_user import UserEntity
from ssokit.db.repo_oauth import ClientUpsertData, create_client
from ssokit.db.repo_user import UserCreateData, create_user
from ssokit.keys.manager import KeyManager

ISSUER = "http://localhost:8000"
ADMIN_TOKEN = "test-admin-token"
FERNET_KEY = Fernet.generate_key().decode()

MakeClient = Callable[..., Awaitable[OAuthClientEntity]]
MakeUser = Callable[..., Awaitable[UserEntity]]


@pytest.fixture
def auth_settings() -> AuthSettings:
    return AuthSettings(
        issuer_url=ISSUER,
        audiences="orders-api,billing-api",
        supported_scopes="orders:read orders:write admin:all offline_access",
        admin_token=ADMIN_TOKEN,
        signing_key_encryption_key=FERNET_KEY,
        log_level="DEBUG",
    )


@pytest.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """A SQLite database in a temp file, shared by every session in a test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sso.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _rec) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def key_manager(
    session_factory: async_sessionmaker[AsyncSession], auth_settings: AuthSettings
) -> KeyManager:
    """A key manager with its first signing key already active."""
    manager = KeyManager.from_settings(session_factory, auth_settings)
    await manager.initialize()
    return manager


@pytest.fixture
def app(
    auth_settings: AuthSettings,
    session_factory: async_sessionmaker[AsyncSession],
    key_manager: KeyManager,
) -> FastAPI:
    return create_app(auth_settings, session_factory, key_manager)


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client bound to the Authorization Server app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=ISSUER) as ac:
        yield ac


@pytest.fixture
def make_client(session_factory: async_sessionmaker[AsyncSession]) -> MakeClient:
    """Register an OAuth client in its own committed transaction."""

    async def _make(
        client_id: str,
        secret: str,
        *,
        scopes: list[str],
        grant_types: list[str] | None = None,
        audiences: list[str] | None = None,
    ) -> OAuthClientEntity:
        async with session_factory() as session, session.begin():
            return await create_client(
                session,
                ClientUpsertData(
                    client_id=client_id,
                    client_secret=secret,
                    allowed_scopes=scopes,
                    allowed_grant_types=grant_types,
                    allowed_audiences=audiences,
                ),
            )

    return _make


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> MakeUser:
    """Create a password-grant user in its own committed transaction."""

    async def _make(username: str, password: str, *, scopes: list[str]) -> UserEntity:
        async with session_factory() as session, session.begin():
            return await create_user(
                session,
                UserCreateData(username=username, password=password, scopes=scopes),
            )

    return _make
