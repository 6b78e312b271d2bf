"""FastAPI dependency injection for admin API authentication."""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ssokit.core.services import AuthServices, get_services

_security = HTTPBearer()


async def require_admin_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_security)],
    services: Annotated[AuthServices, Depends(get_services)],
) -> str:
    """Verify the AUTH_ADMIN_TOKEN Bearer token."""
    expected = services.settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return credentials.credentials
