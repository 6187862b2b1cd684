"""HTTP client for the MYA gateway.

``ResilientClient`` retries transport failures (including timeouts) a fixed
number of times with linear backoff, then raises NetworkError. HTTP error
statuses are not retried: they surface as HttpError with the response body.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from mya.errors import HttpError, MalformedResponseError, NetworkError

log = structlog.get_logger()

DEFAULT_ATTEMPTS = 3
DEFAULT_TIMEOUT = 30.0
DEFAULT_BACKOFF = 1.0
EXCERPT_LENGTH = 500


class ResilientClient:
    """Retrying HTTP client bound to one gateway base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        timeout: float = DEFAULT_TIMEOUT,
        backoff: float = DEFAULT_BACKOFF,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.attempts = attempts
        self.timeout = timeout
        self.backoff = backoff
        self._transport = transport
        self._sleep = sleep

    async def request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transport failures.

        Each attempt is bounded by ``timeout``; a timed-out attempt counts as a
        failed one. Attempt n is followed by a pause of n * backoff seconds.

        Raises:
            NetworkError: Every attempt failed
        """
        url = f"{self.base_url}{endpoint}"
        last_error = ""
        for attempt in range(1, self.attempts + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    return await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = str(e) or type(e).__name__
                log.debug(
                    "request_attempt_failed",
                    method=method,
                    url=url,
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self.attempts:
                    await self._sleep(self.backoff * attempt)

        raise NetworkError(self.attempts, last_error)

    async def api_request(
        self,
        method: str,
        endpoint: str,
        *,
        token: str | None = None,
        json_body: Any = None,
    ) -> Any:
        """Call an endpoint and return its parsed JSON body.

        Raises:
            NetworkError: Every attempt failed
            HttpError: Non-success status (carries the response body)
            MalformedResponseError: Success status with a non-JSON body
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        content = json.dumps(json_body) if json_body is not None else None

        response = await self.request(method, endpoint, headers=headers, content=content)
        if not response.is_success:
            raise HttpError(response.status_code, response.reason_phrase, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(response.text[:EXCERPT_LENGTH]) from e

    async def is_available(self) -> bool:
        """One health check; False on any failure."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/health")
        except httpx.HTTPError:
            return False
        return response.is_success


class MyaClient:
    """Gateway operations used by the CLI commands."""

    def __init__(self, http: ResilientClient) -> None:
        self.http = http

    @property
    def base_url(self) -> str:
        return self.http.base_url

    async def health(self) -> bool:
        return await self.http.is_available()

    async def request_code(self, email: str) -> dict[str, Any]:
        return await self.http.api_request("POST", "/auth", json_body={"email": email})

    async def verify_otp(self, email: str, otp_code: str, method_id: str) -> dict[str, Any]:
        return await self.http.api_request(
            "POST",
            "/verify-otp",
            json_body={"email": email, "otpCode": otp_code, "methodId": method_id},
        )

    async def verify_token(self, token: str) -> bool:
        result = await self.http.api_request("POST", "/auth/verify", token=token)
        return bool(result.get("valid")) if isinstance(result, dict) else False

    async def logout(self, token: str, user_id: str, machine_id: str) -> None:
        await self.http.api_request(
            "POST",
            "/api/v1/auth/logout",
            token=token,
            json_body={"userId": user_id, "machineId": machine_id},
        )

    async def submit(self, endpoint: str, token: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self.http.api_request("POST", endpoint, token=token, json_body=body)

    async def queue_status(self, token: str, queue_id: str) -> dict[str, Any]:
        return await self.http.api_request("GET", f"/queue/status/{queue_id}", token=token)

    async def queue_stats(self, token: str) -> dict[str, Any]:
        return await self.http.api_request("GET", "/queue/stats", token=token)


def get_client(transport: httpx.AsyncBaseTransport | None = None) -> MyaClient:
    """Build a client for the configured gateway URL."""
    from mya.cli.config_store import get_api_url

    return MyaClient(ResilientClient(get_api_url(), transport=transport))
