"""Bearer token guard for Resource Server routes."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request

from ssokit.core.errors import (
    HTTP_FORBIDDEN,
    HTTP_UNAUTHORIZED,
    AccessDenied,
    TokenRejected,
)
from ssokit.crypto.types import IdentityContext
from ssokit.resource.validator import TokenValidator

logger = logging.getLogger(__name__)

INVALID_TOKEN = "invalid_token"
INSUFFICIENT_SCOPE = "insufficient_scope"


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def www_authenticate(error: str, scope: str | None = None) -> str:
    value = f'Bearer error="{error}"'
    if scope:
        value += f', scope="{scope}"'
    return value


class BearerGuard:
    """Turns an Authorization header into an identity or a rejection.

    Validation failures collapse to 401 ``invalid_token``; the specific
    reason is only logged. A valid token lacking the required scope is a
    403 ``insufficient_scope``.
    """

    def __init__(self, validator: TokenValidator, audience: str | None = None) -> None:
        self._validator = validator
        self._audience = audience

    async def authorize(
        self, authorization: str | None, required_scope: str | None = None
    ) -> IdentityContext:
        token = extract_bearer(authorization)
        if token is None:
            raise AccessDenied(HTTP_UNAUTHORIZED, INVALID_TOKEN)
        try:
            identity = await self._validator.validate(token, self._audience)
        except TokenRejected as exc:
            logger.info("Bearer token rejected: %s", exc.reason.value)
            raise AccessDenied(HTTP_UNAUTHORIZED, INVALID_TOKEN) from exc
        if required_scope and not identity.has_scope(required_scope):
            logger.info(
                "Bearer token for %s lacks scope %s", identity.subject, required_scope
            )
            raise AccessDenied(HTTP_FORBIDDEN, INSUFFICIENT_SCOPE)
        return identity

    def require(
        self, scope: str | None = None
    ) -> Callable[[Request], Awaitable[IdentityContext]]:
        """FastAPI dependency factory guarding a route with ``scope``."""

        async def dependency(request: Request) -> IdentityContext:
            try:
                return await self.authorize(
                    request.headers.get("Authorization"), scope
                )
            except AccessDenied as exc:
                raise HTTPException(
                    status_code=exc.status_code,
                    detail={"error": exc.error},
                    headers={
                        "WWW-Authenticate": www_authenticate(
                            exc.error,
                            scope if exc.error == INSUFFICIENT_SCOPE else None,
                        )
                    },
                ) from exc

        return dependency
