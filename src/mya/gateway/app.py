"""Gateway application factory.

Wires the authenticator, rate limiter, request queue and backend client into a
FastAPI app. Local routes are declared here; forwarded routes are registered
from the routing table.
"""

import json
import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from mya import __version__
from mya.auth import CodeNotifier, LogCodeNotifier, OtpAuthenticator, ResendCodeNotifier
from mya.config import Settings, settings as default_settings
from mya.errors import InvalidInputError, MyaError, RequestNotFoundError, UnauthorizedError
from mya.gateway.middleware import (
    ANONYMOUS,
    ApiPrefixMiddleware,
    AuthMiddleware,
    RateLimitMiddleware,
    error_response,
)
from mya.gateway.proxy import BackendClient
from mya.gateway.queue import RequestQueue, RequestStatus
from mya.gateway.rate_limit import RateLimiter
from mya.gateway.routes import API_PREFIX, Dispatch, RouteRule, forwarded_rules
from mya.kv import KVStore, create_store

log = structlog.get_logger()

INTERNAL_ERROR = "Internal server error"
DRAIN_JOB = "process_user_queue"
# Long enough for a running drain to finish and release its job id
DRAIN_FOLLOWUP_DELAY = timedelta(seconds=5)


def drain_job_id(user_id: str) -> str:
    """arq job id for a user's drain; duplicates collapse while one is queued."""
    return f"drain:{user_id}"


def followup_job_id(user_id: str, queue_id: str) -> str:
    """arq job id for a deferred drain covering one submission."""
    return f"drain:{user_id}:{queue_id}"


def _client_address(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


def _user_id(request: Request) -> str:
    return getattr(request.state, "user_id", ANONYMOUS)


async def _read_json(request: Request) -> dict[str, Any]:
    raw = await request.body()
    try:
        data = json.loads(raw or b"{}")
    except json.JSONDecodeError as e:
        raise InvalidInputError("Request body must be valid JSON") from e
    if not isinstance(data, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return data


def build_notifier(config: Settings) -> CodeNotifier:
    api_key = config.resend_api_key.get_secret_value()
    if api_key:
        return ResendCodeNotifier(api_key, config.email_from)
    return LogCodeNotifier()


def create_app(
    config: Settings | None = None,
    *,
    store: KVStore | None = None,
    notifier: CodeNotifier | None = None,
    backend: BackendClient | None = None,
    job_pool: Any = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Build the gateway app.

    Args:
        config: Settings (defaults to the process-wide settings)
        store: Key-value store (defaults to one built from config.kv_url)
        notifier: Passcode delivery channel
        backend: Backend client (defaults to one built from config)
        job_pool: arq pool used to schedule queue drains; created on startup
            from config.kv_url when jobs are enabled and none is given
        clock: Time source for passcode and queue timestamps
    """
    config = config or default_settings
    store = store or create_store(config.kv_url)
    backend = backend or BackendClient(
        config.llm_url,
        config.llm_api_token.get_secret_value(),
        timeout=config.backend_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.jobs_enabled and app.state.job_pool is None:
            from arq import create_pool
            from arq.connections import RedisSettings

            app.state.job_pool = await create_pool(RedisSettings.from_dsn(config.kv_url))
            log.info("job_pool_connected")
        yield
        await backend.close()
        if app.state.job_pool is not None:
            await app.state.job_pool.aclose()

    app = FastAPI(title="MYA Gateway", version=__version__, lifespan=lifespan)

    app.state.settings = config
    app.state.store = store
    app.state.backend = backend
    app.state.job_pool = job_pool
    app.state.authenticator = OtpAuthenticator(
        store,
        notifier or build_notifier(config),
        jwt_secret=config.jwt_secret.get_secret_value(),
        jwt_algorithm=config.jwt_algorithm,
        ttl_minutes=config.otp_ttl_minutes,
        clock=clock,
        log_codes=config.is_development,
    )
    app.state.queue = RequestQueue(
        store,
        max_size=config.queue_max_size,
        ttl_seconds=config.queue_ttl_seconds,
        clock=clock,
    )
    app.state.rate_limiter = (
        RateLimiter(
            store,
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
        )
        if config.rate_limit_enabled
        else None
    )

    # Added innermost first: prefix rewrite, then auth, then rate limiting
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(AuthMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(ApiPrefixMiddleware)

    _register_error_handlers(app)
    _register_local_routes(app)
    _register_forwarded_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MyaError)
    async def mya_error_handler(request: Request, exc: MyaError) -> JSONResponse:
        if exc.status_code >= 500:
            log.warning("request_failed", path=request.url.path, error=exc.message)
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        error_id = str(uuid.uuid4())[:8]
        log.error(
            "internal_error",
            error_id=error_id,
            path=request.url.path,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )
        return JSONResponse(
            {"error": INTERNAL_ERROR, "details": f"ref: {error_id}"},
            status_code=500,
        )


def _register_local_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": app.state.settings.server_name,
            "version": __version__,
        }

    @app.post("/auth")
    async def request_code(request: Request) -> dict[str, Any]:
        data = await _read_json(request)
        outcome = await app.state.authenticator.request_code(data.get("email"))
        if outcome.delivered:
            message = "OTP sent to email"
        else:
            message = "OTP could not be delivered by email"
        return {
            "success": True,
            "methodId": outcome.method_id,
            "email": data["email"],
            "delivered": outcome.delivered,
            "message": message,
        }

    @app.post("/verify-otp")
    async def verify_otp(request: Request) -> dict[str, Any]:
        data = await _read_json(request)
        grant = await app.state.authenticator.login(
            data.get("email"), data.get("otpCode"), data.get("methodId")
        )
        return {"success": True, **grant.model_dump(by_alias=True)}

    @app.post("/auth/verify")
    async def verify_token(request: Request) -> JSONResponse:
        try:
            user_id = app.state.authenticator.verify_session(request.headers.get("authorization"))
        except UnauthorizedError as e:
            return JSONResponse({"valid": False, "error": e.message}, status_code=401)
        return JSONResponse({"valid": True, "userId": user_id})

    @app.get("/test/otp/{method_id}")
    async def inspect_otp(method_id: str) -> JSONResponse:
        if not app.state.settings.is_development:
            return JSONResponse({"error": "Not available in production"}, status_code=404)
        record = await app.state.authenticator.peek(method_id)
        if record is None:
            return JSONResponse({"error": "OTP not found", "methodId": method_id}, status_code=404)
        return JSONResponse(
            {
                "methodId": method_id,
                "email": record.email,
                "code": record.code,
                "expiresAt": record.expires_at,
            }
        )

    @app.get("/queue/status/{queue_id}")
    async def queue_status(queue_id: str, request: Request) -> dict[str, Any]:
        user_id = _user_id(request)
        queued = await app.state.queue.get_request_status(user_id, queue_id)
        if queued is None:
            raise RequestNotFoundError(user_id, queue_id)
        return {
            "queueId": queued.id,
            "status": queued.status.value,
            "result": queued.result if queued.status is RequestStatus.COMPLETED else None,
            "error": queued.error if queued.status is RequestStatus.FAILED else None,
            "timestamp": queued.timestamp,
        }

    @app.get("/queue/stats")
    async def queue_stats(request: Request) -> dict[str, Any]:
        stats = await app.state.queue.get_queue_stats(_user_id(request))
        return stats.model_dump(by_alias=True)

    @app.post("/queue/cleanup")
    async def queue_cleanup(request: Request) -> dict[str, Any]:
        removed = await app.state.queue.clear_completed(_user_id(request))
        return {"message": "Cleanup completed", "removedCount": removed}


async def _proxy(app: FastAPI, request: Request, method: str, backend_path: str) -> JSONResponse:
    body = await request.body() if method not in ("GET", "HEAD") else None
    response = await app.state.backend.forward(
        method,
        backend_path,
        user_id=_user_id(request),
        body=body,
        params=dict(request.query_params) or None,
        forwarded_for=_client_address(request),
    )
    return JSONResponse(response.payload, status_code=response.status_code)


async def _enqueue(app: FastAPI, request: Request, method: str, backend_path: str) -> JSONResponse:
    user_id = _user_id(request)
    raw = await request.body()
    queue_id = await app.state.queue.enqueue(
        user_id, backend_path, method, raw.decode() if raw else None
    )
    await _schedule_drain(app, user_id, queue_id)
    return JSONResponse(
        {
            "status": "queued",
            "queueId": queue_id,
            "pollUrl": f"/queue/status/{queue_id}",
            "message": "Request queued for processing. Use queueId to check status.",
        },
        status_code=202,
    )


async def _schedule_drain(app: FastAPI, user_id: str, queue_id: str) -> None:
    """Make sure a drain will run after queue_id was listed.

    arq returns None when a job with the same id is still registered. That
    drain may already be past its last dequeue, so a deferred drain with a
    per-submission id is scheduled instead.
    """
    pool = app.state.job_pool
    if pool is None:
        return
    try:
        job = await pool.enqueue_job(DRAIN_JOB, user_id, _job_id=drain_job_id(user_id))
        if job is None:
            log.debug("drain_already_scheduled", user_id=user_id, queue_id=queue_id)
            await pool.enqueue_job(
                DRAIN_JOB,
                user_id,
                _job_id=followup_job_id(user_id, queue_id),
                _defer_by=DRAIN_FOLLOWUP_DELAY,
            )
    except (RedisError, OSError) as e:
        # The request is stored; a later drain or an operator run will pick it up
        log.warning("drain_schedule_failed", user_id=user_id, error=str(e))


def _forwarded_handler(
    app: FastAPI, rule: RouteRule
) -> Callable[[Request], Awaitable[JSONResponse]]:
    async def handler(request: Request) -> JSONResponse:
        backend_path = rule.backend_target(request.path_params)
        if rule.dispatch is Dispatch.QUEUE:
            return await _enqueue(app, request, rule.method, backend_path)
        return await _proxy(app, request, rule.method, backend_path)

    slug = rule.pattern.strip("/").replace("/", "_").replace("{", "").replace("}", "")
    handler.__name__ = f"{rule.dispatch.value}_{rule.method.lower()}_{slug}"
    return handler


def _register_forwarded_routes(app: FastAPI) -> None:
    for rule in forwarded_rules():
        app.add_api_route(rule.pattern, _forwarded_handler(app, rule), methods=[rule.method])

    @app.api_route(
        API_PREFIX.prefix + "/{rest:path}",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    )
    async def api_passthrough(rest: str, request: Request) -> JSONResponse:
        log.info("api_passthrough", method=request.method, path=f"/{rest}")
        return await _proxy(app, request, request.method, f"{API_PREFIX.prefix}/{rest}")
