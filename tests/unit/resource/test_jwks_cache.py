"""Tests for the resource-server JWKS cache."""

import asyncio
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from ssokit.core.errors import JWKSUnavailableError, UnknownKeyError
from ssokit.crypto.keys import generate_rsa_keypair, to_jwk_entry
from ssokit.crypto.types import KeyStatus, PublicKeyView
from ssokit.resource.jwks_cache import HttpJWKSFetcher, JWKSCache, parse_jwks

TTL = 300.0
MIN_REFRESH = 30.0
MAX_STALENESS = 3600.0


def _jwk(kid: str | None = None) -> dict[str, Any]:
    kp = generate_rsa_keypair()
    view = PublicKeyView(
        kid=kid or kp.kid,
        public_key_pem=kp.public_key_pem,
        status=KeyStatus.ACTIVE,
        created_at=datetime.now(UTC),
    )
    return to_jwk_entry(view).model_dump()


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeFetcher:
    """Serves a JWKS document, counting calls; can fail or block on demand."""

    def __init__(self, keys: list[dict[str, Any]]) -> None:
        self.keys = keys
        self.calls = 0
        self.fail = False
        self.gate: asyncio.Event | None = None

    async def __call__(self) -> dict[str, Any]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise httpx.ConnectError("authorization server unreachable")
        return {"keys": list(self.keys)}


@pytest.fixture
def clock() -> FakeMonotonic:
    return FakeMonotonic()


def _cache(fetcher: Any, clock: FakeMonotonic, **overrides: float) -> JWKSCache:
    options = {
        "ttl": TTL,
        "min_refresh_interval": MIN_REFRESH,
        "max_staleness": MAX_STALENESS,
        "fetch_timeout": 1.0,
    }
    options.update(overrides)
    return JWKSCache(fetcher, clock=clock, **options)


class TestLookup:
    async def test_fresh_key_served_without_io(self, clock: FakeMonotonic) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        cache = _cache(fetcher, clock)

        await cache.get_key(jwk["kid"])
        clock.now += TTL - 1
        key = await cache.get_key(jwk["kid"])

        assert key.key_id == jwk["kid"]
        assert fetcher.calls == 1
        assert cache.kids == {jwk["kid"]}

    async def test_expired_entry_is_refetched(self, clock: FakeMonotonic) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        cache = _cache(fetcher, clock)
        await cache.get_key(jwk["kid"])
        clock.now += TTL
        await cache.get_key(jwk["kid"])
        assert fetcher.calls == 2

    async def test_new_kid_found_after_rotation(self, clock: FakeMonotonic) -> None:
        old, new = _jwk(), _jwk()
        fetcher = FakeFetcher([old])
        cache = _cache(fetcher, clock)
        await cache.get_key(old["kid"])

        fetcher.keys = [new, old]
        clock.now += MIN_REFRESH
        key = await cache.get_key(new["kid"])
        assert key.key_id == new["kid"]


class TestUnknownKid:
    async def test_unknown_kid_rate_limited(self, clock: FakeMonotonic) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        cache = _cache(fetcher, clock)

        with pytest.raises(UnknownKeyError):
            await cache.get_key("bogus")
        assert fetcher.calls == 1

        clock.now += MIN_REFRESH - 1
        for _ in range(5):
            with pytest.raises(UnknownKeyError):
                await cache.get_key("bogus")
        assert fetcher.calls == 1

        clock.now += 1
        with pytest.raises(UnknownKeyError):
            await cache.get_key("bogus")
        assert fetcher.calls == 2


class TestSingleFlight:
    async def test_concurrent_misses_share_one_fetch(self, clock: FakeMonotonic) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        fetcher.gate = asyncio.Event()
        cache = _cache(fetcher, clock)

        lookups = [asyncio.create_task(cache.get_key(jwk["kid"])) for _ in range(10)]
        await asyncio.sleep(0)
        fetcher.gate.set()
        keys = await asyncio.gather(*lookups)

        assert fetcher.calls == 1
        assert cache.fetch_count == 1
        assert {k.key_id for k in keys} == {jwk["kid"]}

    async def test_concurrent_unknown_kid_lookups_share_one_fetch(
        self, clock: FakeMonotonic
    ) -> None:
        fetcher = FakeFetcher([_jwk()])
        fetcher.gate = asyncio.Event()
        cache = _cache(fetcher, clock)

        lookups = [asyncio.create_task(cache.get_key("bogus")) for _ in range(25)]
        await asyncio.sleep(0)
        fetcher.gate.set()
        results = await asyncio.gather(*lookups, return_exceptions=True)

        assert fetcher.calls == 1
        assert all(isinstance(r, UnknownKeyError) for r in results)

    async def test_cancelled_waiter_does_not_cancel_fetch(
        self, clock: FakeMonotonic
    ) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        fetcher.gate = asyncio.Event()
        cache = _cache(fetcher, clock)

        first = asyncio.create_task(cache.get_key(jwk["kid"]))
        second = asyncio.create_task(cache.get_key(jwk["kid"]))
        await asyncio.sleep(0)
        first.cancel()
        fetcher.gate.set()

        key = await second
        assert key.key_id == jwk["kid"]
        assert fetcher.calls == 1


class TestStaleFallback:
    async def test_stale_key_served_while_server_down(
        self, clock: FakeMonotonic
    ) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        cache = _cache(fetcher, clock)
        await cache.get_key(jwk["kid"])

        fetcher.fail = True
        clock.now += TTL + 1
        key = await cache.get_key(jwk["kid"])
        assert key.key_id == jwk["kid"]

    async def test_unavailable_past_staleness_ceiling(
        self, clock: FakeMonotonic
    ) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        cache = _cache(fetcher, clock)
        await cache.get_key(jwk["kid"])

        fetcher.fail = True
        clock.now += MAX_STALENESS + 1
        with pytest.raises(JWKSUnavailableError):
            await cache.get_key(jwk["kid"])

    async def test_cold_cache_with_server_down(self, clock: FakeMonotonic) -> None:
        fetcher = FakeFetcher([])
        fetcher.fail = True
        cache = _cache(fetcher, clock)
        with pytest.raises(JWKSUnavailableError):
            await cache.get_key("any")

    async def test_fetch_timeout(self, clock: FakeMonotonic) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        fetcher.gate = asyncio.Event()
        cache = _cache(fetcher, clock, fetch_timeout=0.05)
        with pytest.raises(JWKSUnavailableError):
            await cache.get_key(jwk["kid"])

    async def test_empty_key_set_keeps_previous_snapshot(
        self, clock: FakeMonotonic
    ) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        cache = _cache(fetcher, clock)
        await cache.get_key(jwk["kid"])

        fetcher.keys = []
        clock.now += TTL
        key = await cache.get_key(jwk["kid"])
        assert key.key_id == jwk["kid"]


class TestParseJWKS:
    def test_skips_unusable_keys(self) -> None:
        good = _jwk()
        entries = parse_jwks(
            {
                "keys": [
                    good,
                    {**_jwk(), "alg": "RS512"},
                    {**_jwk(), "use": "enc"},
                    {"kty": "EC", "kid": "ec-1", "crv": "P-256"},
                    {**_jwk(), "kid": ""},
                    "not-a-dict",
                ]
            },
            fetched_at=0.0,
            ttl=TTL,
        )
        assert list(entries) == [good["kid"]]

    def test_missing_keys_array(self) -> None:
        with pytest.raises(ValueError):
            parse_jwks({"issuer": "x"}, fetched_at=0.0, ttl=TTL)


class TestHttpFetcher:
    async def test_fetches_over_http(self, clock: FakeMonotonic) -> None:
        jwk = _jwk()

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/.well-known/jwks.json"
            return httpx.Response(200, json={"keys": [jwk]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            fetcher = HttpJWKSFetcher(
                "http://sso.test/.well-known/jwks.json", client=http
            )
            cache = _cache(fetcher, clock)
            key = await cache.get_key(jwk["kid"])
        assert key.key_id == jwk["kid"]

    async def test_server_error_is_unavailable(self, clock: FakeMonotonic) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            cache = _cache(HttpJWKSFetcher("http://sso.test/jwks", client=http), clock)
            with pytest.raises(JWKSUnavailableError):
                await cache.get_key("any")


class TestBackgroundRefresh:
    async def test_periodic_refresh(self) -> None:
        jwk = _jwk()
        fetcher = FakeFetcher([jwk])
        async with JWKSCache(fetcher, refresh_interval=0.01) as cache:
            await asyncio.sleep(0.1)
            assert fetcher.calls >= 2
            assert jwk["kid"] in cache.kids

    async def test_loop_survives_unexpected_fetcher_errors(self) -> None:
        calls = 0

        async def broken_fetcher() -> dict[str, Any]:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        cache = JWKSCache(broken_fetcher, refresh_interval=0.01)
        cache.start()
        await asyncio.sleep(0.1)
        assert calls >= 2
        assert cache._refresh_task is not None
        assert not cache._refresh_task.done()
        await cache.aclose()


class TestUnexpectedFetcherErrors:
    async def test_lookup_maps_to_unavailable(self, clock: FakeMonotonic) -> None:
        async def broken_fetcher() -> dict[str, Any]:
            raise RuntimeError("boom")

        cache = _cache(broken_fetcher, clock)
        with pytest.raises(JWKSUnavailableError):
            await cache.get_key("any")

    async def test_refresh_raises_unavailable(self, clock: FakeMonotonic) -> None:
        async def broken_fetcher() -> dict[str, Any]:
            raise KeyError("keys")

        cache = _cache(broken_fetcher, clock)
        with pytest.raises(JWKSUnavailableError) as exc_info:
            await cache.refresh()
        assert isinstance(exc_info.value.__cause__, KeyError)
