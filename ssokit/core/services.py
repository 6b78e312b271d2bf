"""Explicit registry of Authorization Server services."""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ssokit.core.settings import AuthSettings
from ssokit.keys.manager import KeyManager
from ssokit.oidc.introspection import IntrospectionService
from ssokit.oidc.publisher import JWKSPublisher
from ssokit.oidc.revocation import RevocationList
from ssokit.oidc.token_service import TokenIssuer


@dataclass(frozen=True)
class AuthServices:
    """Services wired once at startup and handed to the routers via app state."""

    settings: AuthSettings
    key_manager: KeyManager
    issuer: TokenIssuer
    publisher: JWKSPublisher
    revocations: RevocationList
    introspection: IntrospectionService

    @classmethod
    def build(
        cls,
        settings: AuthSettings,
        session_factory: async_sessionmaker[AsyncSession],
        key_manager: KeyManager | None = None,
    ) -> "AuthServices":
        key_manager = key_manager or KeyManager.from_settings(session_factory, settings)
        revocations = RevocationList(storage_timeout=settings.storage_timeout)
        return cls(
            settings=settings,
            key_manager=key_manager,
            issuer=TokenIssuer.from_settings(key_manager, settings),
            publisher=JWKSPublisher(key_manager),
            revocations=revocations,
            introspection=IntrospectionService(
                key_manager,
                revocations,
                issuer=settings.issuer,
                clock_skew=settings.clock_skew,
            ),
        )


def get_services(request: Request) -> AuthServices:
    """FastAPI dependency returning the app's service registry."""
    return request.app.state.services
