"""Type definitions for token endpoint operations."""

from enum import StrEnum

from pydantic import BaseModel


class GrantType(StrEnum):
    """Grant types the token endpoint accepts."""

    CLIENT_CREDENTIALS = "client_credentials"
    PASSWORD = "password"
    REFRESH_TOKEN = "refresh_token"


OFFLINE_ACCESS_SCOPE = "offline_access"


class TokenRequest(BaseModel):
    """Form fields for the token endpoint."""

    grant_type: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = None
    audience: str | None = None
    username: str | None = None
    password: str | None = None
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None


class IntrospectionResponse(BaseModel):
    """RFC 7662 introspection response; only ``active`` when inactive."""

    active: bool
    sub: str | None = None
    scope: str | None = None
    client_id: str | None = None
    aud: str | list[str] | None = None
    iss: str | None = None
    exp: int | None = None
    iat: int | None = None
    jti: str | None = None
    token_type: str | None = None
