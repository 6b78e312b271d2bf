"""Secret hashing and verification using Argon2id."""

import secrets

import argon2

CLIENT_SECRET_BYTES = 32

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)


def hash_password(password: str) -> str:
    """Hash a password or client secret using Argon2id."""
    return _hasher.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext secret against its Argon2 hash."""
    try:
        return _hasher.verify(hashed, plain)
    except argon2.exceptions.VerifyMismatchError:
        return False
    except argon2.exceptions.InvalidHashError:
        return False


def generate_client_secret() -> str:
    """Generate a cryptographically random client secret."""
    return secrets.token_urlsafe(CLIENT_SECRET_BYTES)
