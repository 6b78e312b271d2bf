"""JWT signing and verification using RS256."""

from datetime import datetime, timedelta
from typing import Any

import jwt
from jwt.types import Options

from ssokit.crypto.types import SIGNING_ALGORITHM, AccessTokenClaims, ActiveSigningKey

REQUIRED_CLAIMS = ["exp", "iat", "iss", "sub"]


def sign_access_token(
    key: ActiveSigningKey, claims: AccessTokenClaims, now: datetime
) -> str:
    """Create a signed RS256 access token with ``kid`` in header and body."""
    payload = {
        "iss": claims.iss,
        "sub": claims.sub,
        "aud": claims.aud,
        "scope": claims.scope,
        "client_id": claims.client_id,
        "iat": now,
        "exp": now + timedelta(seconds=claims.ttl_seconds),
        "jti": claims.jti,
        "kid": key.kid,
    }
    return jwt.encode(
        payload,
        key.private_key_pem,
        algorithm=SIGNING_ALGORITHM,
        headers={"kid": key.kid},
    )


def read_header(token: str) -> dict[str, Any]:
    """Return the unverified JOSE header; raises ``jwt.DecodeError``."""
    return jwt.get_unverified_header(token)


def verify_token(
    token: str,
    public_key: Any,
    *,
    issuer: str,
    audience: str | None = None,
    leeway: int = 0,
) -> dict[str, Any]:
    """Verify an RS256 token's signature, ``exp`` and ``iss``; ``aud`` if given."""
    opts: Options = {"require": list(REQUIRED_CLAIMS)}
    if audience is None:
        opts["verify_aud"] = False
    return jwt.decode(
        token,
        public_key,
        algorithms=[SIGNING_ALGORITHM],
        issuer=issuer,
        audience=audience,
        leeway=leeway,
        options=opts,
    )
