"""Session token signing and verification."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

SESSION_LIFETIME = timedelta(hours=24)
SESSION_TOKEN_TYPE = "session"


class JwtError(Exception):
    """Raised when a session token is malformed, forged, or expired."""


def create_session_token(
    user_id: str,
    *,
    secret: str,
    algorithm: str = "HS256",
    issued_at: datetime | None = None,
) -> str:
    """Sign a session token for user_id that expires SESSION_LIFETIME after issue."""
    if not secret:
        raise JwtError("JWT secret is not configured")
    now = issued_at or datetime.now(UTC)
    payload = {
        "userId": user_id,
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": now,
        "exp": now + SESSION_LIFETIME,
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def verify_session_token(token: str, *, secret: str, algorithm: str = "HS256") -> dict[str, Any]:
    """Decode and validate a session token, returning its claims."""
    if not secret:
        raise JwtError("JWT secret is not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise JwtError(str(e)) from e

    if claims.get("type") != SESSION_TOKEN_TYPE:
        raise JwtError("Not a session token")
    if not (claims.get("userId") or claims.get("sub")):
        raise JwtError("Token has no subject")
    return claims
