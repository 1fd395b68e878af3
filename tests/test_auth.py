"""
Unit tests for password hashing and bearer token encoding.
"""

import pytest
from jose import jwt
from app.auth import (
    hash_password,
    verify_password,
    create_access_token,
    decode_access_token,
    new_token_id,
)
from app.config import settings


class TestPasswordHashing:
    """Test bcrypt hashing helpers."""

    def test_hash_is_not_plain_text(self):
        hashed = hash_password("password1")
        assert hashed != "password1"
        assert hashed.startswith("$2")

    def test_hash_is_salted(self):
        """Hashing the same password twice gives different hashes."""
        assert hash_password("password1") != hash_password("password1")

    def test_verify_correct_password(self):
        hashed = hash_password("password1")
        assert verify_password("password1", hashed) is True

    def test_verify_wrong_password(self):
        hashed = hash_password("password1")
        assert verify_password("password2", hashed) is False

    def test_verify_against_empty_or_malformed_hash(self):
        assert verify_password("password1", "") is False
        assert verify_password("password1", "not-a-bcrypt-hash") is False


class TestBearerTokens:
    """Test JWT encoding of issued tokens."""

    def test_token_carries_user_and_token_id(self):
        token_id = new_token_id()
        token = create_access_token(42, token_id)

        claims = decode_access_token(token)

        assert claims["sub"] == "42"
        assert claims["jti"] == token_id

    def test_no_expiry_claim_by_default(self):
        claims = decode_access_token(create_access_token(1, new_token_id()))
        assert "exp" not in claims

    def test_expiry_claim_when_configured(self, monkeypatch):
        monkeypatch.setattr(settings, "JWT_EXPIRATION_MINUTES", 5)
        claims = decode_access_token(create_access_token(1, new_token_id()))
        assert "exp" in claims

    def test_token_ids_are_unique(self):
        assert len({new_token_id() for _ in range(100)}) == 100

    def test_decode_rejects_garbage(self):
        assert decode_access_token("not.a.token") is None

    def test_decode_rejects_foreign_signature(self):
        forged = jwt.encode({"sub": "1", "jti": "x"}, "another-secret-key-of-sufficient-length!!", algorithm="HS256")
        assert decode_access_token(forged) is None
