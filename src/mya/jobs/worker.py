"""arq worker - drains per-user request queues.

Run with: mya-gateway worker

The gateway schedules ``process_user_queue`` after every queued submission
when ``MYA_JOBS_ENABLED`` is set. Job ids are derived from the user id, so a
burst of submissions collapses into one pending drain per user.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from arq.connections import RedisSettings

from mya.config import settings
from mya.errors import MisconfiguredError
from mya.gateway.consumer import drain
from mya.gateway.proxy import BackendClient
from mya.gateway.queue import RequestQueue
from mya.kv import RedisKVStore

log = structlog.get_logger()


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from the gateway's kv_url."""
    if not settings.kv_url.startswith(("redis://", "rediss://")):
        raise MisconfiguredError(
            "Job worker requires Redis",
            details=f"MYA_KV_URL must be a redis:// URL (got {settings.kv_url})",
        )
    return RedisSettings.from_dsn(settings.kv_url)


async def process_user_queue(ctx: dict[str, Any], user_id: str) -> dict[str, Any]:
    """Drain one user's queue against the backend."""
    outcomes = await drain(ctx["queue"], ctx["backend"], user_id)
    return {
        "userId": user_id,
        "processed": len(outcomes),
        "failed": sum(1 for o in outcomes if o.status == "failed"),
    }


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup - initialize resources."""
    from mya.main import configure_logging

    configure_logging(settings.log_level)
    ctx["start_time"] = datetime.now(UTC)
    ctx["store"] = RedisKVStore.from_url(settings.kv_url)
    ctx["queue"] = RequestQueue(
        ctx["store"],
        max_size=settings.queue_max_size,
        ttl_seconds=settings.queue_ttl_seconds,
    )
    ctx["backend"] = BackendClient(
        settings.llm_url,
        settings.llm_api_token.get_secret_value(),
        timeout=settings.backend_timeout_seconds,
    )
    # Refuse to start rather than mark every job failed
    ctx["backend"].require_config()
    log.info("Job worker online")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown - cleanup resources."""
    if "backend" in ctx:
        await ctx["backend"].close()
    if "store" in ctx:
        await ctx["store"].close()
    log.info("Job worker shutting down")


class WorkerSettings:
    """arq worker settings."""

    functions = [process_user_queue]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown

    # Worker settings
    max_jobs = 10  # Drains for different users run concurrently
    job_timeout = 600
    keep_result = 0  # Lets the next drain for a user be queued as soon as this one ends
    poll_delay = 0.5


async def run_worker_async() -> None:
    """Run the arq worker in-process."""
    from arq import Worker

    redis_settings = get_redis_settings()
    log.info(
        "Starting job worker",
        redis_host=redis_settings.host,
        redis_port=redis_settings.port,
        redis_db=redis_settings.database,
        max_jobs=WorkerSettings.max_jobs,
    )

    try:
        worker = Worker(
            functions=WorkerSettings.functions,
            redis_settings=redis_settings,
            on_startup=WorkerSettings.on_startup,
            on_shutdown=WorkerSettings.on_shutdown,
            max_jobs=WorkerSettings.max_jobs,
            job_timeout=WorkerSettings.job_timeout,
            keep_result=WorkerSettings.keep_result,
            poll_delay=WorkerSettings.poll_delay,
        )
        await worker.async_run()
    except Exception:
        log.exception("Job worker crashed")
        raise
