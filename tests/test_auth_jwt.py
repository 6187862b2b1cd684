from datetime import UTC, datetime, timedelta

import pytest
from jose import jwt

from mya.auth.http import extract_bearer_token
from mya.auth.jwt import JwtError, create_session_token, verify_session_token


def test_jwt_roundtrip() -> None:
    token = create_session_token("user_alice", secret="secret")
    claims = verify_session_token(token, secret="secret")
    assert claims["userId"] == "user_alice"
    assert claims["sub"] == "user_alice"
    assert claims["type"] == "session"
    assert claims["exp"] - claims["iat"] == 24 * 60 * 60


def test_jwt_rejects_wrong_secret() -> None:
    token = create_session_token("user_alice", secret="secret1")
    with pytest.raises(JwtError):
        verify_session_token(token, secret="secret2")


def test_jwt_rejects_expired_token() -> None:
    issued = datetime.now(UTC) - timedelta(hours=24, seconds=1)
    token = create_session_token("user_alice", secret="secret", issued_at=issued)
    with pytest.raises(JwtError):
        verify_session_token(token, secret="secret")


def test_jwt_rejects_other_token_types() -> None:
    now = datetime.now(UTC)
    token = jwt.encode(
        {"sub": "user_alice", "type": "refresh", "iat": now, "exp": now + timedelta(hours=1)},
        "secret",
        algorithm="HS256",
    )
    with pytest.raises(JwtError, match="session"):
        verify_session_token(token, secret="secret")


def test_jwt_requires_secret() -> None:
    with pytest.raises(JwtError):
        create_session_token("user_alice", secret="")
    with pytest.raises(JwtError):
        verify_session_token("abc.def.ghi", secret="")


def test_extract_bearer_token() -> None:
    assert extract_bearer_token("Bearer tok") == "tok"
    assert extract_bearer_token(None) is None
    assert extract_bearer_token("Basic abc") is None
