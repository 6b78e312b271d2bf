"""Signing key material: RSA generation, sealing at rest, and JWKS export."""

import uuid_utils
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from ssokit.crypto.types import JWKEntry, PublicKeyView, SigningKeyData

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


def _private_pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def _public_pem(key: rsa.RSAPublicKey) -> str:
    return key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def generate_rsa_keypair() -> SigningKeyData:
    """Create a signing keypair under a fresh time-ordered kid.

    RSA generation is CPU-bound; async callers run this in a worker thread.
    """
    key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE
    )
    return SigningKeyData(
        kid=str(uuid_utils.uuid7()),
        private_key_pem=_private_pem(key),
        public_key_pem=_public_pem(key.public_key()),
    )


class PrivateKeyVault:
    """Seals private keys with a Fernet key before they reach storage.

    A malformed Fernet key fails here, at construction, rather than on the
    first signing request.
    """

    def __init__(self, fernet_key: str) -> None:
        self._fernet = Fernet(fernet_key.encode())

    def seal(self, private_pem: str) -> str:
        return self._fernet.encrypt(private_pem.encode()).decode()

    def unseal(self, sealed: str) -> str:
        try:
            return self._fernet.decrypt(sealed.encode()).decode()
        except InvalidToken as exc:
            raise ValueError(
                "stored signing key was sealed with a different encryption key"
            ) from exc


def to_jwk_entry(key: PublicKeyView) -> JWKEntry:
    """Publish a stored public key as a JWKS entry."""
    public_key = serialization.load_pem_public_key(key.public_key_pem.encode())
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise TypeError(f"signing key {key.kid} is not an RSA key")
    members = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    return JWKEntry(kid=key.kid, alg=key.algorithm, n=members["n"], e=members["e"])
