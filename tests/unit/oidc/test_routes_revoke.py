"""Tests for token revocation."""

from collections.abc import Awaitable, Callable
from typing import Any

from httpx import AsyncClient

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
SECRET = "revoke-secret"

MakeClient = Callable[..., Awaitable[Any]]


async def _offline_tokens(client: AsyncClient, make_client: MakeClient) -> dict:
    await make_client(
        "svc",
        SECRET,
        scopes=["orders:read", "offline_access"],
        grant_types=["client_credentials", "refresh_token"],
    )
    resp = await client.post(
        "/auth/token",
        data={
            "grant_type": "client_credentials",
            "client_id": "svc",
            "client_secret": SECRET,
            "scope": "orders:read offline_access",
        },
    )
    assert resp.status_code == HTTP_OK
    return resp.json()


class TestRevokeEndpoint:
    async def test_unknown_token_still_ok(self, client: AsyncClient) -> None:
        resp = await client.post("/auth/revoke", data={"token": "never-issued"})
        assert resp.status_code == HTTP_OK
        assert resp.json() == {}

    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.post("/auth/revoke", data={})
        assert resp.status_code == HTTP_BAD_REQUEST

    async def test_revoking_access_token_twice(
        self, client: AsyncClient, make_client: MakeClient
    ) -> None:
        tokens = await _offline_tokens(client, make_client)
        for _ in range(2):
            resp = await client.post(
                "/auth/revoke", data={"token": tokens["access_token"]}
            )
            assert resp.status_code == HTTP_OK

    async def test_revoked_refresh_token_cannot_be_used(
        self, client: AsyncClient, make_client: MakeClient
    ) -> None:
        tokens = await _offline_tokens(client, make_client)
        await client.post("/auth/revoke", data={"token": tokens["refresh_token"]})
        resp = await client.post(
            "/auth/token",
            data={
                "grant_type": "refresh_token",
                "client_id": "svc",
                "client_secret": SECRET,
                "refresh_token": tokens["refresh_token"],
            },
        )
        assert resp.status_code == HTTP_BAD_REQUEST
        assert resp.json()["error"] == "invalid_grant"
