"""Tests for Argon2id secret hashing."""

from ssokit.crypto.password import generate_client_secret, hash_password, verify_password


class TestPasswordHashing:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("correct horse")
        assert hashed.startswith("$argon2id$")
        assert verify_password("correct horse", hashed)

    def test_wrong_password(self) -> None:
        assert not verify_password("wrong", hash_password("right"))

    def test_invalid_hash_is_false(self) -> None:
        assert not verify_password("anything", "not-a-hash")


class TestGenerateClientSecret:
    def test_secrets_are_long_and_unique(self) -> None:
        first, second = generate_client_secret(), generate_client_secret()
        assert first != second
        assert len(first) >= 40
