"""Application settings loaded from environment variables."""

from enum import StrEnum
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_TTL_DEFAULT = 900
REFRESH_TOKEN_TTL_DEFAULT = 604_800
KEY_GRACE_PERIOD_DEFAULT = 86_400
KEY_PURGE_INTERVAL_DEFAULT = 3600
JWKS_MAX_AGE_DEFAULT = 60
STORAGE_TIMEOUT_DEFAULT = 5.0
CLOCK_SKEW_DEFAULT = 60
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432

JWKS_CACHE_TTL_DEFAULT = 300
JWKS_REFRESH_INTERVAL_DEFAULT = 300
JWKS_MIN_REFRESH_INTERVAL_DEFAULT = 30
JWKS_MAX_STALENESS_DEFAULT = 3600
JWKS_FETCH_TIMEOUT_DEFAULT = 5.0


def _split_list(value: str, sep: str = ",") -> list[str]:
    return [item.strip() for item in value.split(sep) if item.strip()]


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "sso"
    password: str = "sso"
    database: str = "sso"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT
    url: str = ""

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL unless one is given outright."""
        if self.url:
            return self.url
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class AuthSettings(BaseSettings):
    """Authorization Server settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    issuer_url: str = "http://localhost:8000"
    audiences: str = ""
    supported_scopes: str = "offline_access"
    admin_token: str = ""
    signing_key_encryption_key: str = ""
    auto_generate_keys: bool = True
    access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT
    refresh_token_ttl: int = REFRESH_TOKEN_TTL_DEFAULT
    key_grace_period: int = KEY_GRACE_PERIOD_DEFAULT
    key_purge_interval: int = KEY_PURGE_INTERVAL_DEFAULT
    jwks_max_age: int = JWKS_MAX_AGE_DEFAULT
    storage_timeout: float = STORAGE_TIMEOUT_DEFAULT
    clock_skew: int = CLOCK_SKEW_DEFAULT
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _grace_covers_token_lifetime(self) -> Self:
        # A retired key must stay published until every token it signed expires.
        if self.key_grace_period < self.access_token_ttl:
            raise ValueError(
                "key_grace_period must be at least access_token_ttl "
                f"({self.key_grace_period} < {self.access_token_ttl})"
            )
        return self

    @property
    def issuer(self) -> str:
        return self.issuer_url.rstrip("/")

    def get_audience_list(self) -> list[str]:
        """Parse comma-separated resource-server audiences."""
        return _split_list(self.audiences)

    def get_scope_list(self) -> list[str]:
        """Parse comma- or space-separated advertised scopes."""
        return _split_list(self.supported_scopes.replace(" ", ","))


class ValidatorKind(StrEnum):
    """Token validation strategy selected once at resource-server startup."""

    JWKS = "jwks"
    INTROSPECTION = "introspection"


class ResourceSettings(BaseSettings):
    """Resource Server token validation settings."""

    model_config = SettingsConfigDict(env_prefix="RESOURCE_")

    issuer_url: str = "http://localhost:8000"
    audience: str = ""
    validator: ValidatorKind = ValidatorKind.JWKS
    jwks_url: str = ""
    introspection_url: str = ""
    cache_ttl: int = JWKS_CACHE_TTL_DEFAULT
    refresh_interval: int = JWKS_REFRESH_INTERVAL_DEFAULT
    min_refresh_interval: int = JWKS_MIN_REFRESH_INTERVAL_DEFAULT
    max_staleness: int = JWKS_MAX_STALENESS_DEFAULT
    fetch_timeout: float = JWKS_FETCH_TIMEOUT_DEFAULT
    clock_skew: int = CLOCK_SKEW_DEFAULT

    @property
    def issuer(self) -> str:
        return self.issuer_url.rstrip("/")

    @property
    def resolved_jwks_url(self) -> str:
        """JWKS location, defaulting to the issuer's well-known path."""
        return self.jwks_url or f"{self.issuer}/.well-known/jwks.json"

    @property
    def resolved_introspection_url(self) -> str:
        return self.introspection_url or f"{self.issuer}/auth/introspect"
