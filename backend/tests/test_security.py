"""Tests for password hashing, access tokens and caller resolution."""

from datetime import timedelta
from uuid import uuid4

from marketplace.api.deps import caller_id_from_token
from marketplace.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)


def test_password_round_trip():
    password_hash = get_password_hash("password123")

    assert password_hash != "password123"
    assert verify_password("password123", password_hash)
    assert not verify_password("password124", password_hash)


def test_verify_against_garbage_hash():
    assert not verify_password("password123", "not-a-bcrypt-hash")
    assert not verify_password("password123", "")


def test_token_carries_subject():
    user_id = uuid4()
    token = create_access_token({"sub": str(user_id)})

    assert decode_access_token(token)["sub"] == str(user_id)
    assert caller_id_from_token(token) == user_id


def test_expired_token_is_anonymous():
    token = create_access_token({"sub": str(uuid4())}, expires_delta=timedelta(seconds=-1))

    assert decode_access_token(token) is None
    assert caller_id_from_token(token) is None


def test_malformed_tokens_are_anonymous():
    assert caller_id_from_token(None) is None
    assert caller_id_from_token("not.a.jwt") is None
    assert caller_id_from_token(create_access_token({"sub": "not-a-uuid"})) is None
