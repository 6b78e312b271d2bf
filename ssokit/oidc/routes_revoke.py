"""OAuth token revocation endpoint."""

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Form
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import JSONResponse

from ssokit.core.errors import InvalidRequest
from ssokit.core.services import AuthServices, get_services
from ssokit.db.engine import get_session, storage_guard
from ssokit.db.repo_oauth import consume_refresh_token, get_refresh_token
from ssokit.oidc.token_service import hash_token

logger = logging.getLogger(__name__)

router = APIRouter()


async def revoke_token(
    session: AsyncSession, services: AuthServices, token: str
) -> None:
    """Revoke an access token by ``jti`` or a refresh token by record."""
    claims = await services.introspection.verify(token)
    if claims is not None and claims.get("jti"):
        expires_at = datetime.fromtimestamp(int(claims["exp"]), UTC)
        await services.revocations.revoke(session, claims["jti"], expires_at)
        return

    async with storage_guard(services.settings.storage_timeout):
        record = await get_refresh_token(session, hash_token(token))
        if record is not None and await consume_refresh_token(session, record.id):
            logger.info("Revoked refresh token id=%s", record.id)


@router.post("/auth/revoke")
async def revoke(
    db: Annotated[AsyncSession, Depends(get_session)],
    services: Annotated[AuthServices, Depends(get_services)],
    token: Annotated[str | None, Form()] = None,
) -> JSONResponse:
    """POST /auth/revoke -- revoke a token (idempotent per RFC 7009)."""
    if not token:
        raise InvalidRequest("token is required")
    await revoke_token(db, services, token)
    return JSONResponse({}, status_code=200)
