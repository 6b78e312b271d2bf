"""Access token validation for Resource Servers.

Two strategies share the ``TokenValidator`` interface: local RS256
verification against a ``JWKSCache``, and remote RFC 7662 introspection.
The strategy is picked once from ``ResourceSettings.validator``.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx
import jwt

from ssokit.core.errors import (
    JWKSUnavailableError,
    TokenFailure,
    TokenRejected,
    UnknownKeyError,
)
from ssokit.core.settings import ResourceSettings, ValidatorKind
from ssokit.crypto.jwt_manager import read_header, verify_token
from ssokit.crypto.types import SIGNING_ALGORITHM, IdentityContext
from ssokit.resource.jwks_cache import JWKSCache

logger = logging.getLogger(__name__)


class TokenValidator(Protocol):
    async def validate(
        self, token: str, audience: str | None = None
    ) -> IdentityContext: ...


def _parse_scope(value: object) -> frozenset[str]:
    if isinstance(value, str):
        return frozenset(value.split())
    if isinstance(value, list):
        return frozenset(str(item) for item in value)
    return frozenset()


def identity_from_claims(claims: Mapping[str, Any]) -> IdentityContext:
    """Build the identity context handed to route handlers."""
    client_id = claims.get("client_id")
    return IdentityContext(
        subject=str(claims["sub"]),
        scopes=_parse_scope(claims.get("scope")),
        client_id=str(client_id) if client_id is not None else None,
        claims=dict(claims),
    )


class JWKSValidator:
    """Verify RS256 tokens locally against the cached published keys."""

    def __init__(
        self,
        cache: JWKSCache,
        *,
        issuer: str,
        audience: str = "",
        clock_skew: int = 60,
    ) -> None:
        self._cache = cache
        self._issuer = issuer
        self._audience = audience
        self._clock_skew = clock_skew

    @property
    def cache(self) -> JWKSCache:
        return self._cache

    async def validate(
        self, token: str, audience: str | None = None
    ) -> IdentityContext:
        expected_audience = audience or self._audience
        if not expected_audience:
            raise ValueError("No expected audience configured")

        try:
            header = read_header(token)
        except jwt.PyJWTError as exc:
            raise TokenRejected(TokenFailure.MALFORMED, str(exc)) from exc
        if header.get("alg") != SIGNING_ALGORITHM:
            raise TokenRejected(
                TokenFailure.UNSUPPORTED_ALGORITHM, str(header.get("alg"))
            )
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenRejected(TokenFailure.INVALID_KID, "missing kid")

        try:
            key = await self._cache.get_key(kid)
        except UnknownKeyError as exc:
            raise TokenRejected(TokenFailure.INVALID_KID, kid) from exc
        except JWKSUnavailableError as exc:
            raise TokenRejected(TokenFailure.JWKS_UNAVAILABLE, str(exc)) from exc

        try:
            claims = verify_token(
                token,
                key.key,
                issuer=self._issuer,
                audience=expected_audience,
                leeway=self._clock_skew,
            )
        except jwt.InvalidSignatureError as exc:
            raise TokenRejected(TokenFailure.BAD_SIGNATURE) from exc
        except jwt.ExpiredSignatureError as exc:
            raise TokenRejected(TokenFailure.EXPIRED) from exc
        except jwt.InvalidIssuerError as exc:
            raise TokenRejected(TokenFailure.ISSUER_MISMATCH) from exc
        except jwt.InvalidAudienceError as exc:
            raise TokenRejected(TokenFailure.AUDIENCE_MISMATCH) from exc
        except jwt.MissingRequiredClaimError as exc:
            reason = (
                TokenFailure.AUDIENCE_MISMATCH
                if exc.claim == "aud"
                else TokenFailure.MALFORMED
            )
            raise TokenRejected(reason, f"missing {exc.claim}") from exc
        except jwt.PyJWTError as exc:
            raise TokenRejected(TokenFailure.MALFORMED, str(exc)) from exc
        return identity_from_claims(claims)


class IntrospectionValidator:
    """Ask the Authorization Server whether a token is active."""

    def __init__(
        self,
        url: str,
        *,
        issuer: str,
        audience: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._issuer = issuer
        self._audience = audience
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def validate(
        self, token: str, audience: str | None = None
    ) -> IdentityContext:
        expected_audience = audience or self._audience
        if not expected_audience:
            raise ValueError("No expected audience configured")

        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.post(self._url, data={"token": token})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, TimeoutError, ValueError) as exc:
            logger.warning("Introspection request failed: %s", exc)
            raise TokenRejected(TokenFailure.UPSTREAM_UNAVAILABLE, str(exc)) from exc

        if not isinstance(body, dict) or body.get("active") is not True:
            raise TokenRejected(TokenFailure.INACTIVE)
        if body.get("iss") != self._issuer:
            raise TokenRejected(TokenFailure.ISSUER_MISMATCH)
        aud = body.get("aud")
        audiences = aud if isinstance(aud, list) else [aud]
        if expected_audience not in audiences:
            raise TokenRejected(TokenFailure.AUDIENCE_MISMATCH)
        if not body.get("sub"):
            raise TokenRejected(TokenFailure.MALFORMED, "missing sub")
        return identity_from_claims(body)


def build_validator(
    settings: ResourceSettings,
    *,
    cache: JWKSCache | None = None,
    client: httpx.AsyncClient | None = None,
) -> JWKSValidator | IntrospectionValidator:
    """Select the validation strategy configured for this Resource Server."""
    match settings.validator:
        case ValidatorKind.JWKS:
            return JWKSValidator(
                cache or JWKSCache.from_settings(settings, client),
                issuer=settings.issuer,
                audience=settings.audience,
                clock_skew=settings.clock_skew,
            )
        case ValidatorKind.INTROSPECTION:
            return IntrospectionValidator(
                settings.resolved_introspection_url,
                issuer=settings.issuer,
                audience=settings.audience,
                client=client,
                timeout=settings.fetch_timeout,
            )
