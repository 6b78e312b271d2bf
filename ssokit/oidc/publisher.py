"""JWKS document publication."""

from ssokit.crypto.keys import to_jwk_entry
from ssokit.crypto.types import JWKSResponse
from ssokit.keys.manager import KeyManager


class JWKSPublisher:
    """Renders the currently verifiable public keys as a JWKS document.

    The document is rebuilt on every call so a rotation is visible to the
    next fetch.
    """

    def __init__(self, key_manager: KeyManager) -> None:
        self._key_manager = key_manager

    async def publish(self) -> JWKSResponse:
        keys = await self._key_manager.list_verifiable_keys()
        return JWKSResponse(keys=[to_jwk_entry(k) for k in keys])
