"""Passcode delivery channels.

Delivery is best-effort: a notifier may raise, and the authenticator logs the
failure and carries on so the login attempt still gets a usable method id.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog

log = structlog.get_logger()

RESEND_API_URL = "https://api.resend.com/emails"


class CodeNotifier(Protocol):
    async def send_code(self, email: str, code: str, *, ttl_minutes: int) -> None: ...


class LogCodeNotifier:
    """Development notifier that writes the passcode to the log."""

    async def send_code(self, email: str, code: str, *, ttl_minutes: int) -> None:
        log.info("otp_code_logged", email=email, code=code, ttl_minutes=ttl_minutes)


class ResendCodeNotifier:
    """Send passcodes by email through the Resend API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout
        self._transport = transport

    def _render(self, code: str, ttl_minutes: int) -> str:
        return (
            f"<p>Your MYA login code is:</p>"
            f"<h2 style=\"letter-spacing: 4px\">{code}</h2>"
            f"<p>It expires in {ttl_minutes} minutes. "
            f"If you did not request it, you can ignore this email.</p>"
        )

    async def send_code(self, email: str, code: str, *, ttl_minutes: int) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._sender,
                    "to": [email],
                    "subject": "Your MYA login code",
                    "html": self._render(code, ttl_minutes),
                },
            )
        response.raise_for_status()
        log.info("otp_email_sent", email=email)
