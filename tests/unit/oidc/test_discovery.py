"""Tests for the discovery document builder."""

from ssokit.core.settings import AuthSettings
from ssokit.oidc.discovery import build_discovery


class TestBuildDiscovery:
    def test_trailing_slash_stripped_from_issuer(self) -> None:
        doc = build_discovery(
            AuthSettings(issuer_url="https://sso.example.com/", supported_scopes="a b")
        )
        assert doc.issuer == "https://sso.example.com"
        assert doc.jwks_uri == "https://sso.example.com/.well-known/jwks.json"
        assert doc.scopes_supported == ["a", "b"]
        assert doc.grant_types_supported == [
            "client_credentials",
            "password",
            "refresh_token",
        ]

    def test_no_authorization_endpoint_flows_advertised(self) -> None:
        body = build_discovery(AuthSettings()).model_dump()
        assert "response_types_supported" not in body
        assert "authorization_endpoint" not in body
