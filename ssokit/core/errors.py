"""Error taxonomy shared by the Authorization and Resource Server sides."""

from enum import StrEnum

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_SERVER_ERROR = 500
HTTP_SERVICE_UNAVAILABLE = 503


class OAuthError(Exception):
    """A client-correctable token endpoint error (RFC 6749 section 5.2)."""

    error = "invalid_request"
    status_code = HTTP_BAD_REQUEST

    def __init__(self, description: str | None = None) -> None:
        super().__init__(description or self.error)
        self.description = description

    def to_body(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class InvalidRequest(OAuthError):
    error = "invalid_request"


class InvalidClient(OAuthError):
    error = "invalid_client"
    status_code = HTTP_UNAUTHORIZED


class InvalidGrant(OAuthError):
    error = "invalid_grant"


class UnauthorizedClient(OAuthError):
    error = "unauthorized_client"


class InvalidScope(OAuthError):
    error = "invalid_scope"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"


class NoActiveKeyError(Exception):
    """No signing key is active and auto-generation is disabled."""


class StorageUnavailableError(Exception):
    """The persistence layer failed or timed out."""


class JWKSUnavailableError(Exception):
    """The Authorization Server's key set could not be obtained."""


class UnknownKeyError(Exception):
    """A key id is absent from a freshly obtained key set."""

    def __init__(self, kid: str) -> None:
        super().__init__(f"unknown kid {kid}")
        self.kid = kid


class TokenFailure(StrEnum):
    """Internal reason a presented token was rejected; never sent to callers."""

    MALFORMED = "malformed"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    INVALID_KID = "invalid_kid"
    JWKS_UNAVAILABLE = "jwks_unavailable"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    INACTIVE = "inactive"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class TokenRejected(Exception):
    """A bearer token failed validation."""

    error = "invalid_token"

    def __init__(self, reason: TokenFailure, detail: str | None = None) -> None:
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason
        self.detail = detail


class AccessDenied(Exception):
    """Structured rejection returned to a Resource Server's caller."""

    def __init__(self, status_code: int, error: str) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
