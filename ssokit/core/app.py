"""FastAPI application factory for the ssokit Authorization Server."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import JSONResponse

from ssokit.api.router_admin import router as admin_router
from ssokit.core.errors import (
    HTTP_SERVER_ERROR,
    HTTP_SERVICE_UNAVAILABLE,
    NoActiveKeyError,
    OAuthError,
    StorageUnavailableError,
)
from ssokit.core.logging import configure_logging
from ssokit.core.services import AuthServices
from ssokit.core.settings import AuthSettings
from ssokit.db.engine import create_session_factory
from ssokit.keys.manager import KeyManager
from ssokit.oidc.routes_discovery import router as discovery_router
from ssokit.oidc.routes_revoke import router as revoke_router
from ssokit.oidc.routes_token import router as token_router

logger = logging.getLogger(__name__)


async def _oauth_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, OAuthError):
        raise exc
    logger.info("OAuth request rejected: %s (%s)", exc.error, exc.description)
    return JSONResponse(
        exc.to_body(),
        status_code=exc.status_code,
        headers={"Cache-Control": "no-store"},
    )


async def _no_active_key_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("Token request failed: %s", exc)
    return JSONResponse(
        {"error": "server_error", "error_description": "No signing key"},
        status_code=HTTP_SERVER_ERROR,
    )


async def _storage_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("Request failed on storage: %s", exc)
    return JSONResponse(
        {"error": "temporarily_unavailable"},
        status_code=HTTP_SERVICE_UNAVAILABLE,
    )


def create_app(
    settings: AuthSettings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    key_manager: KeyManager | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application."""
    settings = settings or AuthSettings()
    configure_logging(settings.log_level)
    session_factory = session_factory or create_session_factory()
    services = AuthServices.build(settings, session_factory, key_manager)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await services.key_manager.initialize()
        purge_task = asyncio.create_task(
            services.key_manager.run_purge_schedule(settings.key_purge_interval)
        )
        try:
            yield
        finally:
            purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await purge_task

    app = FastAPI(
        title="ssokit Authorization Server",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.services = services

    app.add_exception_handler(OAuthError, _oauth_error_handler)
    app.add_exception_handler(NoActiveKeyError, _no_active_key_handler)
    app.add_exception_handler(StorageUnavailableError, _storage_handler)

    app.include_router(discovery_router)
    app.include_router(token_router)
    app.include_router(revoke_router)
    app.include_router(admin_router)

    return app
