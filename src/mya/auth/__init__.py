"""Passcode login and session tokens."""

from mya.auth.http import extract_bearer_token
from mya.auth.jwt import JwtError, create_session_token, verify_session_token
from mya.auth.notify import CodeNotifier, LogCodeNotifier, ResendCodeNotifier
from mya.auth.otp import OtpAuthenticator, OtpRecord, SessionGrant, derive_user_id

__all__ = [
    "CodeNotifier",
    "JwtError",
    "LogCodeNotifier",
    "OtpAuthenticator",
    "OtpRecord",
    "ResendCodeNotifier",
    "SessionGrant",
    "create_session_token",
    "derive_user_id",
    "extract_bearer_token",
    "verify_session_token",
]
