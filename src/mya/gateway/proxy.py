"""Forwarding calls to the analysis backend.

The backend is expected to answer with JSON. Anything else (an HTML error page
from a hosting proxy, an empty body, garbage) is translated into a structured
error object carrying the backend's status and a short excerpt, so callers
never see a raw parse failure.
"""

import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from mya.errors import BackendMisconfiguredError, BackendUnavailableError

log = structlog.get_logger()

EXCERPT_LENGTH = 300

MISSING_URL_DETAILS = (
    "MYA_LLM_URL environment variable must be set to the backend service URL "
    "(e.g., https://[username]-mya-llm.hf.space for Hugging Face Spaces deployment)"
)
MISSING_TOKEN_DETAILS = (
    "LLM_API_TOKEN (or MYA_LLM_API_TOKEN) environment variable must be set with the "
    "gateway API token for backend authentication"
)
HTML_HINT = (
    "The backend returned an HTML error page instead of JSON. "
    "Check that MYA_LLM_URL points to the correct backend service."
)
INVALID_HINT = "The backend response could not be parsed as JSON."


@dataclass(frozen=True)
class BackendResponse:
    status_code: int
    payload: Any
    is_json: bool = True

    @property
    def ok(self) -> bool:
        return self.is_json and 200 <= self.status_code < 300


def looks_like_html(text: str) -> bool:
    lowered = text.lower()
    return "<!doctype" in lowered or "<html" in lowered


def translate_backend_body(status_code: int, text: str) -> BackendResponse:
    """Parse a backend body, or describe why it could not be parsed."""
    try:
        return BackendResponse(status_code, json.loads(text or "{}"))
    except json.JSONDecodeError:
        pass

    is_html = looks_like_html(text)
    log.warning(
        "backend_unparseable_response",
        status_code=status_code,
        html=is_html,
        excerpt=text[:120],
    )
    payload = {
        "error": "Backend returned error page" if is_html else "Backend returned invalid response",
        "details": text[:EXCERPT_LENGTH] if text else "Empty response",
        "statusCode": status_code,
        "troubleshooting": HTML_HINT if is_html else INVALID_HINT,
    }
    return BackendResponse(status_code, payload, is_json=False)


class BackendClient:
    """HTTP client for the analysis backend."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def require_config(self) -> None:
        """Raise BackendMisconfiguredError naming the missing setting."""
        if not self.base_url:
            raise BackendMisconfiguredError(
                "Backend service not configured", details=MISSING_URL_DETAILS
            )
        if not self._api_token:
            raise BackendMisconfiguredError(
                "Backend authentication not configured", details=MISSING_TOKEN_DETAILS
            )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_url(self, path: str) -> httpx.URL:
        return httpx.URL(self.base_url).copy_with(path=path)

    async def forward(
        self,
        method: str,
        path: str,
        *,
        user_id: str,
        body: str | bytes | None = None,
        params: dict[str, str] | None = None,
        forwarded_for: str | None = None,
    ) -> BackendResponse:
        """Send one call to the backend and translate its response.

        Args:
            method: HTTP method
            path: Backend path (the URL's path is replaced, not appended to)
            user_id: Caller identity sent as X-User-Id
            body: Raw request body, sent only for methods that carry one
            params: Query parameters
            forwarded_for: Original client address for X-Forwarded-For

        Raises:
            BackendMisconfiguredError: URL or token missing
            BackendUnavailableError: The backend could not be reached in time
        """
        self.require_config()
        method = method.upper()
        headers = {
            "Content-Type": "application/json",
            "X-Forwarded-For": forwarded_for or "unknown",
            "X-User-Id": user_id,
            "X-API-Token": self._api_token,
        }
        content = body if method not in ("GET", "HEAD") and body else None
        url = self.build_url(path)

        try:
            response = await self._get_client().request(
                method, url, headers=headers, content=content, params=params
            )
        except httpx.HTTPError as e:
            log.error("backend_request_failed", method=method, path=path, error=str(e))
            raise BackendUnavailableError(
                "Backend request failed",
                details=str(e) or type(e).__name__,
            ) from e

        log.info("backend_call", method=method, path=path, status_code=response.status_code)
        return translate_backend_body(response.status_code, response.text)
