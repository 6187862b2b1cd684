"""One-time passcode login.

Turns an email address into a signed session without storing passwords:

1. ``request_code`` stores a 6-digit code under a fresh method id and hands it
   to a delivery channel.
2. ``verify_code`` checks the code once. The record is deleted on success and
   on detected expiry, so a code can never be replayed.
3. ``issue_session`` / ``verify_session`` sign and check the 24h session JWT.

Delivery failures never fail the login attempt. The record stays in the store
and can be inspected through the development passcode endpoint.
"""

from __future__ import annotations

import hashlib
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field

from mya.auth.http import extract_bearer_token
from mya.auth.jwt import SESSION_LIFETIME, JwtError, create_session_token, verify_session_token
from mya.auth.notify import CodeNotifier
from mya.errors import InvalidInputError, MisconfiguredError, UnauthorizedError
from mya.kv import KVStore

log = structlog.get_logger()

OTP_KEY_PREFIX = "otp:"
CODE_DIGITS = 6


class OtpRecord(BaseModel):
    """Pending passcode stored under ``otp:{method_id}``."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    code: str
    timestamp: float
    expires_at: float = Field(alias="expiresAt")


class CodeRequest(BaseModel):
    """Outcome of a passcode request."""

    method_id: str
    delivered: bool


class VerifyResult(BaseModel):
    valid: bool
    email: str | None = None


class SessionGrant(BaseModel):
    """Session material returned to the client after a successful login."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    machine_id: str = Field(alias="machineId")
    session_token: str = Field(alias="sessionToken")
    session_jwt: str = Field(alias="sessionJwt")
    email: str
    expires_at: float = Field(alias="expiresAt")


def generate_code() -> str:
    """Uniformly random 6-digit code, leading zeros allowed."""
    return f"{secrets.randbelow(10**CODE_DIGITS):0{CODE_DIGITS}d}"


def derive_user_id(email: str) -> str:
    """Stable user id for an email address, so a returning user keeps their queue."""
    normalized = email.strip().lower()
    local_part = normalized.split("@", 1)[0]
    digest = hashlib.sha256(normalized.encode()).hexdigest()[:12]
    return f"user_{local_part}_{digest}"


def otp_key(method_id: str) -> str:
    return f"{OTP_KEY_PREFIX}{method_id}"


class OtpAuthenticator:
    """Issues and verifies passcodes and session tokens."""

    def __init__(
        self,
        store: KVStore,
        notifier: CodeNotifier,
        *,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        ttl_minutes: int = 15,
        clock: Callable[[], float] = time.time,
        log_codes: bool = False,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._jwt_secret = jwt_secret
        self._jwt_algorithm = jwt_algorithm
        self._ttl_minutes = ttl_minutes
        self._clock = clock
        self._log_codes = log_codes

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_minutes * 60

    async def request_code(self, email: str | None) -> CodeRequest:
        """Store a fresh passcode for email and try to deliver it."""
        if not isinstance(email, str) or "@" not in email:
            raise InvalidInputError("Valid email required")

        now = self._clock()
        method_id = f"method_{int(now * 1000)}_{secrets.token_hex(5)}"
        record = OtpRecord(
            email=email,
            code=generate_code(),
            timestamp=now,
            expires_at=now + self.ttl_seconds,
        )
        await self._store.put(
            otp_key(method_id),
            record.model_dump_json(by_alias=True),
            ttl_seconds=self.ttl_seconds,
        )

        if self._log_codes:
            log.info("otp_issued", email=email, method_id=method_id, code=record.code)
        else:
            log.info("otp_issued", email=email, method_id=method_id)

        delivered = True
        try:
            await self._notifier.send_code(email, record.code, ttl_minutes=self._ttl_minutes)
        except Exception as e:
            # Login must still succeed through the fallback path
            delivered = False
            log.warning(
                "otp_delivery_failed",
                email=email,
                method_id=method_id,
                error_type=type(e).__name__,
                error=str(e),
            )

        return CodeRequest(method_id=method_id, delivered=delivered)

    async def peek(self, method_id: str) -> OtpRecord | None:
        """Read a pending record without consuming it."""
        raw = await self._store.get(otp_key(method_id))
        if raw is None:
            return None
        return OtpRecord.model_validate_json(raw)

    async def verify_code(self, method_id: str, code: str) -> VerifyResult:
        """Check a code. Fails closed; a matching record is consumed."""
        key = otp_key(method_id)
        record = await self.peek(method_id)
        if record is None:
            return VerifyResult(valid=False)

        if self._clock() > record.expires_at:
            await self._store.delete(key)
            log.info("otp_expired", method_id=method_id)
            return VerifyResult(valid=False)

        if not secrets.compare_digest(record.code, str(code)):
            log.info("otp_mismatch", method_id=method_id)
            return VerifyResult(valid=False)

        await self._store.delete(key)
        return VerifyResult(valid=True, email=record.email)

    async def login(self, email: str | None, code: str | None, method_id: str | None) -> SessionGrant:
        """Verify a passcode for email and grant a session."""
        if not email or not code or not method_id:
            raise InvalidInputError("Email, OTP code, and method ID required")

        result = await self.verify_code(method_id, code)
        # Method ids are not bound to an email, so the stored email must match too
        if not result.valid or result.email != email:
            raise UnauthorizedError("Invalid OTP code")

        user_id = derive_user_id(email)
        issued = self._clock()
        grant = SessionGrant(
            user_id=user_id,
            machine_id=f"machine_{secrets.token_hex(6)}",
            session_token=f"session_{int(issued * 1000)}_{secrets.token_hex(8)}",
            session_jwt=self.issue_session(user_id, issued_at=issued),
            email=email,
            expires_at=issued + SESSION_LIFETIME.total_seconds(),
        )
        log.info("session_issued", user_id=user_id)
        return grant

    def issue_session(self, user_id: str, *, issued_at: float | None = None) -> str:
        """Sign a 24h session token for user_id."""
        self._require_secret()
        issued = datetime.fromtimestamp(issued_at if issued_at is not None else self._clock(), UTC)
        return create_session_token(
            user_id,
            secret=self._jwt_secret,
            algorithm=self._jwt_algorithm,
            issued_at=issued,
        )

    def verify_session(self, authorization: str | None) -> str:
        """Resolve the user id carried by an Authorization header."""
        token = extract_bearer_token(authorization)
        if token is None:
            raise UnauthorizedError("Missing or invalid Authorization header")
        self._require_secret()
        try:
            claims = verify_session_token(
                token, secret=self._jwt_secret, algorithm=self._jwt_algorithm
            )
        except JwtError as e:
            log.debug("invalid_bearer_token", error=str(e))
            raise UnauthorizedError("Invalid or expired token") from e
        return str(claims.get("userId") or claims["sub"])

    def _require_secret(self) -> None:
        if not self._jwt_secret:
            raise MisconfiguredError(
                "Auth service unavailable",
                details="MYA_JWT_SECRET (or JWT_SECRET) must be set to sign session tokens",
            )
