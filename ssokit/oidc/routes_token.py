"""Token and introspection endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Form, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.core.errors import InvalidRequest
from ssokit.core.services import AuthServices, get_services
from ssokit.db.engine import get_session
from ssokit.oidc.types import IntrospectionResponse, TokenRequest, TokenResponse

router = APIRouter(prefix="/auth", tags=["oauth"])

DbSession = Annotated[AsyncSession, Depends(get_session)]
Services = Annotated[AuthServices, Depends(get_services)]


@router.post("/token", response_model_exclude_none=True)
async def token_endpoint(
    response: Response,
    db: DbSession,
    services: Services,
    form: Annotated[TokenRequest, Form()],
) -> TokenResponse:
    """POST /auth/token -- client_credentials, password, refresh_token."""
    response.headers["Cache-Control"] = "no-store"
    return await services.issuer.issue(db, form)


@router.post("/introspect", response_model_exclude_none=True)
async def introspect(
    db: DbSession,
    services: Services,
    token: Annotated[str | None, Form()] = None,
) -> IntrospectionResponse:
    """POST /auth/introspect -- report whether a token is active."""
    if not token:
        raise InvalidRequest("token is required")
    return await services.introspection.introspect(db, token)
