"""Pydantic schemas for the admin API."""

from datetime import datetime

from pydantic import BaseModel, Field

from ssokit.oidc.types import GrantType


class ClientPayload(BaseModel):
    """Request body for POST /admin/clients."""

    client_id: str = Field(min_length=1, max_length=48)
    client_name: str | None = None
    allowed_scopes: list[str] = Field(default_factory=list)
    allowed_grant_types: list[GrantType] = Field(
        default_factory=lambda: [GrantType.CLIENT_CREDENTIALS]
    )
    allowed_audiences: list[str] = Field(default_factory=list)


class ClientUpdatePayload(BaseModel):
    """Request body for PUT /admin/clients/{client_id}; omitted fields are kept."""

    client_name: str | None = None
    rotate_secret: bool = False
    allowed_scopes: list[str] | None = None
    allowed_grant_types: list[GrantType] | None = None
    allowed_audiences: list[str] | None = None
    is_active: bool | None = None


class ClientResponse(BaseModel):
    """A registered client; ``client_secret`` is only set when newly issued."""

    client_id: str
    client_name: str
    allowed_scopes: list[str]
    allowed_grant_types: list[str]
    allowed_audiences: list[str]
    is_active: bool
    client_secret: str | None = None


class UserPayload(BaseModel):
    """Request body for POST /admin/users."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)
    id: str | None = None
    scopes: list[str] = Field(default_factory=list)


class UserResponse(BaseModel):
    id: str
    username: str
    scopes: list[str]
    is_active: bool


class SigningKeyResponse(BaseModel):
    """Public description of a signing key."""

    kid: str
    algorithm: str
    status: str
    created_at: datetime
    retired_at: datetime | None = None


class PurgeResponse(BaseModel):
    purged: list[str]
