"""OpenID Connect Discovery document builder."""

from pydantic import BaseModel

from ssokit.core.settings import AuthSettings
from ssokit.crypto.types import SIGNING_ALGORITHM
from ssokit.oidc.types import GrantType


class DiscoveryDocument(BaseModel):
    """OIDC .well-known/openid-configuration response."""

    issuer: str
    token_endpoint: str
    jwks_uri: str
    introspection_endpoint: str
    revocation_endpoint: str
    grant_types_supported: list[str]
    scopes_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    token_signing_alg_values_supported: list[str]


def build_discovery(settings: AuthSettings) -> DiscoveryDocument:
    """Build the discovery document from settings."""
    issuer = settings.issuer
    return DiscoveryDocument(
        issuer=issuer,
        token_endpoint=f"{issuer}/auth/token",
        jwks_uri=f"{issuer}/.well-known/jwks.json",
        introspection_endpoint=f"{issuer}/auth/introspect",
        revocation_endpoint=f"{issuer}/auth/revoke",
        grant_types_supported=[g.value for g in GrantType],
        scopes_supported=settings.get_scope_list(),
        token_endpoint_auth_methods_supported=["client_secret_post"],
        token_signing_alg_values_supported=[SIGNING_ALGORITHM],
    )
