"""Gateway middleware: API prefix handling, authentication, and rate limiting.

Order on the way in: prefix rewrite, then authentication, then rate limiting.
A call rejected by either gate never reaches a handler, so the queue and the
backend are untouched.
"""

from __future__ import annotations

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from mya.errors import MyaError, RateLimitedError, UnauthorizedError
from mya.gateway.routes import is_public, local_path

log = structlog.get_logger()

ANONYMOUS = "anonymous"


def error_response(exc: MyaError) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


class ApiPrefixMiddleware:
    """Serve ``/api/v1/<route>`` locally when <route> is a gateway-local route.

    Other prefixed calls keep their path and reach the passthrough proxy.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            stripped = local_path(scope["method"], scope["path"])
            if stripped is not None:
                scope = dict(scope)
                scope["path"] = stripped
                scope["raw_path"] = stripped.encode()
        await self.app(scope, receive, send)


class AuthMiddleware(BaseHTTPMiddleware):
    """Verify bearer tokens and attach the caller's user id to request.state."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request.state.user_id = ANONYMOUS
        if request.method == "OPTIONS" or is_public(request.method, request.url.path):
            return await call_next(request)

        authenticator = request.app.state.authenticator
        try:
            request.state.user_id = authenticator.verify_session(
                request.headers.get("authorization")
            )
        except UnauthorizedError as e:
            log.info("unauthorized", path=request.url.path, reason=e.message)
            return JSONResponse({"error": f"Unauthorized: {e.message}"}, status_code=401)
        except MyaError as e:
            return error_response(e)

        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttle calls per resolved identity."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        limiter = getattr(request.app.state, "rate_limiter", None)
        if limiter is not None and request.method != "OPTIONS":
            identity = getattr(request.state, "user_id", ANONYMOUS)
            if not await limiter.allow(identity):
                return error_response(RateLimitedError("Rate limit exceeded"))
        return await call_next(request)
