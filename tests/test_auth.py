"""
Tests for bearer tokens and password hashing.
"""

import pytest
from fastapi import HTTPException

from auth.jwt import create_token, verify_token
from auth.password import hash_password, needs_rehash, verify_password

from conftest import make_settings


class TestTokens:
    def test_round_trip(self):
        settings = make_settings()
        claims = verify_token(create_token(12, "ADMIN", settings=settings, now=1000), settings=settings, now=1001)
        assert claims["user_id"] == 12
        assert claims["role"] == "ADMIN"
        assert claims["exp"] == 1000 + settings.jwt_expiry_seconds

    def test_unknown_role_downgraded(self):
        settings = make_settings()
        claims = verify_token(create_token(1, "ROOT", settings=settings, now=0), settings=settings, now=0)
        assert claims["role"] == "USER"

    def test_expired(self):
        settings = make_settings(jwt_expiry_seconds=60)
        token = create_token(1, settings=settings, now=0)
        with pytest.raises(HTTPException) as exc_info:
            verify_token(token, settings=settings, now=61)
        assert exc_info.value.status_code == 401

    def test_signed_with_other_secret(self):
        token = create_token(1, settings=make_settings(jwt_secret="a"), now=0)
        with pytest.raises(HTTPException):
            verify_token(token, settings=make_settings(jwt_secret="b"), now=0)

    @pytest.mark.parametrize("token", ["", "no-dot", "!!!.abc"])
    def test_malformed(self, token):
        with pytest.raises(HTTPException):
            verify_token(token, settings=make_settings(), now=0)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret", rounds=4)
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)

    def test_garbage_hash_never_matches(self):
        assert not verify_password("x", "plain-text")
        assert not verify_password("x", "")

    def test_needs_rehash(self):
        hashed = hash_password("pw", rounds=4)
        assert needs_rehash(hashed, rounds=5)
        assert not needs_rehash(hashed, rounds=4)
        assert needs_rehash("legacy")
