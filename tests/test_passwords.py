"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - Hashes are salted bcrypt strings, never the plaintext
  - verify_password: match, mismatch, malformed stored hash
  - Non-text input raises EncodingError
  - 72-byte truncation applies identically to hash and verify
  - authenticate_user: success, wrong password, unknown user, plaintext row
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from auth.errors import EncodingError, MalformedHashError
from auth.passwords import authenticate_user, hash_password, looks_like_hash, verify_password


@pytest.fixture(scope="module")
def store(store_factory):
    s = store_factory("passwords")
    s.create("carol", hash_password("carol-pass"), role="user")
    with s.engine.connect() as conn:
        conn.execute(
            text("INSERT INTO users (username, password, role, createdAt) VALUES ('legacy', 'plain123', 'user', '2024-01-01 00:00:00')")
        )
        conn.commit()
    yield s
    s.close()


class TestHashing:
    def test_hash_is_not_plaintext(self) -> None:
        hashed = hash_password("admin")
        assert hashed != "admin"
        assert looks_like_hash(hashed)

    def test_hash_is_salted(self) -> None:
        assert hash_password("same-password") != hash_password("same-password")

    def test_verify_match_and_mismatch(self) -> None:
        hashed = hash_password("correct horse")
        assert verify_password("correct horse", hashed) is True
        assert verify_password("wrong horse", hashed) is False

    def test_verify_is_case_sensitive(self) -> None:
        hashed = hash_password("Secret1")
        assert verify_password("secret1", hashed) is False

    def test_malformed_hash_raises(self) -> None:
        with pytest.raises(MalformedHashError):
            verify_password("anything", "plain123")

    def test_lone_surrogate_raises_encoding_error(self) -> None:
        with pytest.raises(EncodingError):
            hash_password("bad\ud800")

    def test_non_string_raises_encoding_error(self) -> None:
        with pytest.raises(EncodingError):
            hash_password(b"bytes-not-text")  # type: ignore[arg-type]

    def test_long_passwords_truncate_at_72_bytes(self) -> None:
        """Only the first 72 bytes count, for hashing and verifying alike."""
        base = "x" * 72
        hashed = hash_password(base + "tail-one")
        assert verify_password(base + "tail-two", hashed) is True
        assert verify_password("x" * 71, hashed) is False


class TestAuthenticateUser:
    def test_valid_credentials_return_user(self, store) -> None:
        user = authenticate_user(store, "carol", "carol-pass")
        assert user is not None
        assert user.username == "carol"
        assert user.role == "user"

    def test_wrong_password_returns_none(self, store) -> None:
        assert authenticate_user(store, "carol", "nope") is None

    def test_unknown_user_returns_none(self, store) -> None:
        assert authenticate_user(store, "nobody", "carol-pass") is None

    def test_username_is_case_sensitive(self, store) -> None:
        assert authenticate_user(store, "CAROL", "carol-pass") is None

    def test_plaintext_row_never_authenticates(self, store) -> None:
        """A legacy plaintext password is not compared as-is, even when it matches."""
        assert authenticate_user(store, "legacy", "plain123") is None
