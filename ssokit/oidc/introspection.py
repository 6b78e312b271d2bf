"""Server-side token introspection against all verifiable keys."""

import logging
from typing import Any

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.crypto.jwt_manager import read_header, verify_token
from ssokit.crypto.types import SIGNING_ALGORITHM
from ssokit.keys.manager import KeyManager
from ssokit.oidc.revocation import RevocationList
from ssokit.oidc.types import IntrospectionResponse

logger = logging.getLogger(__name__)

INACTIVE = IntrospectionResponse(active=False)


class IntrospectionService:
    """Reports whether a token is currently valid without saying why not."""

    def __init__(
        self,
        key_manager: KeyManager,
        revocations: RevocationList,
        *,
        issuer: str,
        clock_skew: int = 0,
    ) -> None:
        self._key_manager = key_manager
        self._revocations = revocations
        self._issuer = issuer
        self._clock_skew = clock_skew

    async def verify(self, token: str) -> dict[str, Any] | None:
        """Return verified claims, or None if the signature or claims fail."""
        try:
            header = read_header(token)
        except jwt.PyJWTError as exc:
            logger.debug("Introspection: undecodable header: %s", exc)
            return None
        if header.get("alg") != SIGNING_ALGORITHM:
            logger.debug("Introspection: rejected alg=%s", header.get("alg"))
            return None

        kid = header.get("kid")
        keys = {k.kid: k for k in await self._key_manager.list_verifiable_keys()}
        key = keys.get(kid) if isinstance(kid, str) else None
        if key is None:
            logger.debug("Introspection: kid=%s is not verifiable", kid)
            return None

        try:
            return verify_token(
                token,
                key.public_key_pem,
                issuer=self._issuer,
                leeway=self._clock_skew,
            )
        except jwt.PyJWTError as exc:
            logger.debug("Introspection: verification failed: %s", exc)
            return None

    async def introspect(
        self, session: AsyncSession, token: str
    ) -> IntrospectionResponse:
        claims = await self.verify(token)
        if claims is None:
            return INACTIVE
        jti = claims.get("jti")
        if jti and await self._revocations.is_revoked(session, jti):
            logger.debug("Introspection: jti=%s is revoked", jti)
            return INACTIVE
        return IntrospectionResponse(
            active=True,
            sub=claims.get("sub"),
            scope=claims.get("scope", ""),
            client_id=claims.get("client_id"),
            aud=claims.get("aud"),
            iss=claims.get("iss"),
            exp=claims.get("exp"),
            iat=claims.get("iat"),
            jti=jti,
            token_type="access_token",
        )
