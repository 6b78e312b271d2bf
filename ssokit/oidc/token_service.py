"""Access token issuance for the client_credentials, password and refresh grants."""

import hashlib
import logging
import re
import secrets
from datetime import timedelta

import uuid_utils
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.core.clock import Clock, as_utc, utcnow
from ssokit.core.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    UnauthorizedClient,
    UnsupportedGrantType,
)
from ssokit.core.settings import AuthSettings
from ssokit.crypto.jwt_manager import sign_access_token
from ssokit.crypto.types import AccessTokenClaims
from ssokit.db.engine import storage_guard
from ssokit.db.models_oauth import OAuthClientEntity, RefreshTokenEntity
from ssokit.db.repo_oauth import (
    authenticate_client,
    consume_refresh_token,
    get_refresh_token,
    store_refresh_token,
)
from ssokit.db.repo_user import get_user_by_id, verify_credentials
from ssokit.keys.manager import KeyManager
from ssokit.oidc.types import (
    OFFLINE_ACCESS_SCOPE,
    GrantType,
    TokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

# RFC 6749 section 3.3 scope-token characters
_SCOPE_TOKEN = re.compile(r"^[\x21\x23-\x5B\x5D-\x7E]+$")

SUBJECT_CLIENT = "client"
SUBJECT_USER = "user"


def generate_refresh_token() -> str:
    """Generate a cryptographically random opaque refresh token."""
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    """SHA-256 hash a token for database storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def parse_scope(value: str | None) -> list[str]:
    """Split a space-delimited scope string, keeping first-seen order."""
    if not value:
        return []
    tokens = value.split(" ")
    scopes = [t for t in tokens if t]
    for scope in scopes:
        if not _SCOPE_TOKEN.match(scope):
            raise InvalidRequest("malformed scope")
    return list(dict.fromkeys(scopes))


class _Principal(BaseModel):
    """Who the token is about and what it may carry."""

    subject: str
    subject_type: str
    allowed_scopes: list[str]
    audience: list[str] | None = None


class TokenIssuer:
    """Validates grant requests and signs access tokens with the active key."""

    def __init__(
        self,
        key_manager: KeyManager,
        *,
        issuer: str,
        audiences: list[str],
        access_ttl: int,
        refresh_ttl: int,
        storage_timeout: float | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._key_manager = key_manager
        self._issuer = issuer
        self._audiences = audiences
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._storage_timeout = storage_timeout
        self._clock = clock

    @classmethod
    def from_settings(
        cls, key_manager: KeyManager, settings: AuthSettings
    ) -> "TokenIssuer":
        return cls(
            key_manager,
            issuer=settings.issuer,
            audiences=settings.get_audience_list(),
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            storage_timeout=settings.storage_timeout,
        )

    async def issue(self, session: AsyncSession, request: TokenRequest) -> TokenResponse:
        """Run the grant state machine; raises ``OAuthError`` subclasses."""
        grant = self._validate_request(request)
        requested_scope = parse_scope(request.scope)
        requested_audience = (request.audience or "").split()

        async with storage_guard(self._storage_timeout):
            client = await authenticate_client(
                session, request.client_id or "", request.client_secret or ""
            )
            if client is None:
                raise InvalidClient("client authentication failed")
            if grant.value not in (client.allowed_grant_types or []):
                raise UnauthorizedClient(
                    f"client may not use the {grant.value} grant"
                )
            principal = await self._resolve_principal(session, grant, client, request)

        scope = self._effective_scope(requested_scope, principal.allowed_scopes)
        audience = self._resolve_audience(client, requested_audience, principal)

        key = await self._key_manager.get_active_key()
        now = self._clock()
        jti = str(uuid_utils.uuid7())
        claims = AccessTokenClaims(
            iss=self._issuer,
            sub=principal.subject,
            aud=audience[0] if len(audience) == 1 else audience,
            scope=" ".join(scope),
            client_id=client.id,
            jti=jti,
            ttl_seconds=self._access_ttl,
        )
        access_token = sign_access_token(key, claims, now)

        refresh_token: str | None = None
        if OFFLINE_ACCESS_SCOPE in scope and GrantType.REFRESH_TOKEN.value in (
            client.allowed_grant_types or []
        ):
            refresh_token = generate_refresh_token()
            async with storage_guard(self._storage_timeout):
                await store_refresh_token(
                    session,
                    RefreshTokenEntity(
                        id=str(uuid_utils.uuid7()),
                        token_hash=hash_token(refresh_token),
                        client_id=client.id,
                        subject=principal.subject,
                        subject_type=principal.subject_type,
                        scope=claims.scope,
                        audience=audience,
                        expires_at=now + timedelta(seconds=self._refresh_ttl),
                        revoked=False,
                    ),
                )

        logger.info(
            "Issued access token jti=%s kid=%s client=%s grant=%s",
            jti,
            key.kid,
            client.id,
            grant.value,
        )
        return TokenResponse(
            access_token=access_token,
            token_type="Bearer",
            expires_in=self._access_ttl,
            scope=claims.scope,
            refresh_token=refresh_token,
        )

    def _validate_request(self, request: TokenRequest) -> GrantType:
        if not request.grant_type:
            raise InvalidRequest("grant_type is required")
        try:
            grant = GrantType(request.grant_type)
        except ValueError:
            raise UnsupportedGrantType(
                f"grant type {request.grant_type} is not supported"
            ) from None
        if not request.client_id or not request.client_secret:
            raise InvalidRequest("client_id and client_secret are required")
        if grant is GrantType.PASSWORD and not (request.username and request.password):
            raise InvalidRequest("username and password are required")
        if grant is GrantType.REFRESH_TOKEN and not request.refresh_token:
            raise InvalidRequest("refresh_token is required")
        return grant

    async def _resolve_principal(
        self,
        session: AsyncSession,
        grant: GrantType,
        client: OAuthClientEntity,
        request: TokenRequest,
    ) -> _Principal:
        client_scopes = list(client.allowed_scopes or [])
        if grant is GrantType.CLIENT_CREDENTIALS:
            return _Principal(
                subject=client.id,
                subject_type=SUBJECT_CLIENT,
                allowed_scopes=client_scopes,
            )

        if grant is GrantType.PASSWORD:
            user = await verify_credentials(
                session, request.username or "", request.password or ""
            )
            if user is None:
                raise InvalidGrant("invalid resource owner credentials")
            user_scopes = set(user.scopes or [])
            return _Principal(
                subject=user.id,
                subject_type=SUBJECT_USER,
                allowed_scopes=[s for s in client_scopes if s in user_scopes],
            )

        record = await get_refresh_token(session, hash_token(request.refresh_token or ""))
        if record is None or record.revoked or record.client_id != client.id:
            raise InvalidGrant("invalid refresh token")
        if as_utc(record.expires_at) <= self._clock():
            raise InvalidGrant("refresh token expired")
        if record.subject_type == SUBJECT_USER:
            user = await get_user_by_id(session, record.subject)
            if user is None or not user.is_active:
                raise InvalidGrant("resource owner is no longer active")

        # Refresh tokens are single use; a replacement is issued with the response.
        if not await consume_refresh_token(session, record.id):
            raise InvalidGrant("invalid refresh token")

        current = set(client_scopes)
        return _Principal(
            subject=record.subject,
            subject_type=record.subject_type,
            allowed_scopes=[s for s in parse_scope(record.scope) if s in current],
            audience=list(record.audience or []) or None,
        )

    @staticmethod
    def _effective_scope(requested: list[str], allowed: list[str]) -> list[str]:
        if not requested:
            return list(allowed)
        permitted = set(allowed)
        denied = [s for s in requested if s not in permitted]
        if denied:
            raise InvalidScope(f"scope not permitted: {' '.join(denied)}")
        return requested

    def _resolve_audience(
        self,
        client: OAuthClientEntity,
        requested: list[str],
        principal: _Principal,
    ) -> list[str]:
        permitted = list(client.allowed_audiences or []) or self._audiences
        if requested:
            denied = [a for a in requested if a not in permitted]
            if denied:
                raise InvalidRequest(f"audience not permitted: {' '.join(denied)}")
            return list(dict.fromkeys(requested))
        if principal.audience:
            return principal.audience
        return permitted or [self._issuer]
