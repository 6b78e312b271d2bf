"""Type definitions for signing keys, JWKS, and token claims."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

SIGNING_ALGORITHM = "RS256"


class KeyStatus(StrEnum):
    """Lifecycle state of a signing key."""

    PENDING = "pending"
    ACTIVE = "active"
    RETIRED = "retired"


class SigningKeyData(BaseModel):
    """A freshly generated RSA keypair for JWT signing."""

    kid: str
    private_key_pem: str
    public_key_pem: str


class PublicKeyView(BaseModel):
    """Verification-only view of a signing key; carries no private material."""

    model_config = ConfigDict(frozen=True)

    kid: str
    algorithm: str = SIGNING_ALGORITHM
    public_key_pem: str
    status: KeyStatus
    created_at: datetime
    retired_at: datetime | None = None


class ActiveSigningKey(BaseModel):
    """The current signer, with its decrypted private key."""

    model_config = ConfigDict(frozen=True)

    kid: str
    algorithm: str = SIGNING_ALGORITHM
    private_key_pem: str = Field(repr=False)
    public_key_pem: str


class JWKEntry(BaseModel):
    """Single JWK entry in a JWKS response."""

    kty: str = "RSA"
    use: str = "sig"
    alg: str = SIGNING_ALGORITHM
    kid: str
    n: str
    e: str


class JWKSResponse(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]


class AccessTokenClaims(BaseModel):
    """Claims bundle for access token creation."""

    iss: str
    sub: str
    aud: str | list[str]
    scope: str = ""
    client_id: str
    jti: str
    ttl_seconds: int


class IdentityContext(BaseModel):
    """Verified identity handed to a Resource Server's route handler."""

    subject: str
    scopes: frozenset[str]
    client_id: str | None = None
    claims: dict[str, object] = Field(default_factory=dict)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes
