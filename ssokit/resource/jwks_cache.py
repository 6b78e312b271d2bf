"""Resource-server cache of the Authorization Server's published keys."""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
import jwt
from jwt import PyJWK
from pydantic import BaseModel, ConfigDict

from ssokit.core.errors import JWKSUnavailableError, UnknownKeyError
from ssokit.core.settings import ResourceSettings
from ssokit.crypto.types import SIGNING_ALGORITHM

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[dict[str, Any]]]
MonotonicClock = Callable[[], float]


class CacheEntry(BaseModel):
    """One verification key and the moment it was fetched."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kid: str
    key: PyJWK
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


class HttpJWKSFetcher:
    """Fetch a JWKS document over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __call__(self) -> dict[str, Any]:
        response = await self._client.get(self._url)
        response.raise_for_status()
        document = response.json()
        if not isinstance(document, dict):
            raise ValueError("JWKS document is not a JSON object")
        return document

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def parse_jwks(
    document: Mapping[str, Any], fetched_at: float, ttl: float
) -> dict[str, CacheEntry]:
    """Turn a JWKS document into cache entries, skipping unusable keys."""
    keys = document.get("keys")
    if not isinstance(keys, list):
        raise ValueError("JWKS document has no keys array")
    entries: dict[str, CacheEntry] = {}
    for jwk in keys:
        if not isinstance(jwk, dict):
            continue
        kid = jwk.get("kid")
        if (
            not isinstance(kid, str)
            or not kid
            or jwk.get("kty") != "RSA"
            or jwk.get("use", "sig") != "sig"
            or jwk.get("alg", SIGNING_ALGORITHM) != SIGNING_ALGORITHM
        ):
            logger.debug("Skipping unusable JWK %r", kid)
            continue
        try:
            key = PyJWK(jwk, algorithm=SIGNING_ALGORITHM)
        except jwt.PyJWTError as exc:
            logger.warning("Skipping malformed JWK %s: %s", kid, exc)
            continue
        entries[kid] = CacheEntry(kid=kid, key=key, fetched_at=fetched_at, ttl=ttl)
    return entries


class JWKSCache:
    """Per-kid key cache with single-flight refresh and bounded stale fallback.

    A lookup for a fresh kid never performs I/O. A lookup for a missing or
    expired kid triggers at most one concurrent fetch, and no more than one
    fetch per ``min_refresh_interval`` outside the periodic refresh task.
    When the Authorization Server cannot be reached, keys from the last
    successful fetch keep being served for up to ``max_staleness`` seconds.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        ttl: float = 300,
        refresh_interval: float = 300,
        min_refresh_interval: float = 30,
        max_staleness: float = 3600,
        fetch_timeout: float = 5.0,
        clock: MonotonicClock = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl
        self._refresh_interval = refresh_interval
        self._min_refresh_interval = min_refresh_interval
        self._max_staleness = max_staleness
        self._fetch_timeout = fetch_timeout
        self._clock = clock
        self._entries: Mapping[str, CacheEntry] = {}
        self._last_attempt: float | None = None
        self._last_success: float | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self.fetch_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: ResourceSettings,
        client: httpx.AsyncClient | None = None,
    ) -> "JWKSCache":
        fetcher = HttpJWKSFetcher(
            settings.resolved_jwks_url,
            client=client,
            timeout=settings.fetch_timeout,
        )
        return cls(
            fetcher,
            ttl=settings.cache_ttl,
            refresh_interval=settings.refresh_interval,
            min_refresh_interval=settings.min_refresh_interval,
            max_staleness=settings.max_staleness,
            fetch_timeout=settings.fetch_timeout,
        )

    @property
    def kids(self) -> frozenset[str]:
        return frozenset(self._entries)

    async def get_key(self, kid: str) -> PyJWK:
        """Return the verification key for ``kid``.

        Raises ``UnknownKeyError`` when a usable key set lacks ``kid`` and
        ``JWKSUnavailableError`` when no usable key set is available.
        """
        entry = self._entries.get(kid)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.key

        if self._inflight is not None or self._may_fetch(self._clock()):
            with contextlib.suppress(JWKSUnavailableError):
                await self.refresh()

        if not self._within_staleness(self._clock()):
            raise JWKSUnavailableError("no key set within the staleness ceiling")
        entry = self._entries.get(kid)
        if entry is None:
            raise UnknownKeyError(kid)
        return entry.key

    async def refresh(self) -> None:
        """Fetch the key set, joining a fetch already in progress."""
        task = self._inflight
        if task is None:
            task = asyncio.create_task(self._fetch_and_swap())
            self._inflight = task
            task.add_done_callback(self._on_refresh_done)
        await asyncio.shield(task)

    def start(self) -> None:
        """Start the periodic refresh task."""
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def aclose(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None
        if isinstance(self._fetcher, HttpJWKSFetcher):
            await self._fetcher.aclose()

    async def __aenter__(self) -> "JWKSCache":
        self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    def _may_fetch(self, now: float) -> bool:
        return (
            self._last_attempt is None
            or now - self._last_attempt >= self._min_refresh_interval
        )

    def _within_staleness(self, now: float) -> bool:
        return (
            self._last_success is not None
            and now - self._last_success <= self._max_staleness
        )

    def _on_refresh_done(self, task: asyncio.Task[None]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()

    async def _fetch_and_swap(self) -> None:
        self._last_attempt = self._clock()
        self.fetch_count += 1
        try:
            async with asyncio.timeout(self._fetch_timeout):
                document = await self._fetcher()
            now = self._clock()
            entries = parse_jwks(document, now, self._ttl)
        except (httpx.HTTPError, TimeoutError, ValueError) as exc:
            logger.warning("JWKS refresh failed: %s", exc or type(exc).__name__)
            raise JWKSUnavailableError(str(exc)) from exc
        except Exception as exc:
            logger.exception("JWKS refresh failed unexpectedly")
            raise JWKSUnavailableError(type(exc).__name__) from exc
        if not entries:
            logger.warning("JWKS refresh returned no usable keys")
            raise JWKSUnavailableError("no usable keys")
        self._entries = entries
        self._last_success = now
        logger.info("JWKS refreshed with %d key(s)", len(entries))

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            try:
                await self.refresh()
            except JWKSUnavailableError:
                continue
            except Exception:
                logger.exception("Periodic JWKS refresh failed; will retry")
