"""Queue consumer: drains a user's queue against the backend.

At most one consumer per user is expected but not enforced. Two concurrent
drains for the same user may forward the same request twice.
"""

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from mya.errors import BackendUnavailableError
from mya.gateway.proxy import BackendClient, BackendResponse
from mya.gateway.queue import TERMINAL_STATUSES, QueuedRequest, RequestQueue, RequestStatus

log = structlog.get_logger()


class ProcessOutcome(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    queue_id: str | None = Field(default=None, alias="queueId")
    result: Any = None
    error: str | None = None
    message: str | None = None


def describe_failure(response: BackendResponse) -> str:
    """Human-readable error for a backend response that is not a success."""
    payload = response.payload
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("detail") or payload.get("message")
        if message:
            hint = payload.get("troubleshooting")
            text = f"{message} (HTTP {response.status_code})"
            return f"{text}: {hint}" if hint else text
    return f"Backend returned HTTP {response.status_code}"


async def _forward(backend: BackendClient, request: QueuedRequest) -> BackendResponse:
    return await backend.forward(
        request.method,
        request.path,
        user_id=request.user_id,
        body=request.body,
    )


async def _fail(queue: RequestQueue, request: QueuedRequest, error: str) -> ProcessOutcome:
    await queue.mark_failed(request.user_id, request.id, error)
    await queue.remove_from_queue(request.user_id, request.id, keep_record=True)
    log.warning(
        "queue_request_failed", user_id=request.user_id, request_id=request.id, error=error
    )
    return ProcessOutcome(status="failed", queue_id=request.id, error=error)


async def process_next(queue: RequestQueue, backend: BackendClient, user_id: str) -> ProcessOutcome:
    """Process the head of user_id's queue.

    Raises BackendMisconfiguredError before touching the queue when the backend
    URL or token is missing, so queued requests are never silently dropped.
    """
    backend.require_config()

    while True:
        request = await queue.dequeue(user_id)
        if request is None:
            return ProcessOutcome(status="no_requests", message="No pending requests in queue")
        if request.status in TERMINAL_STATUSES:
            # Finished earlier but never unlisted; keep it pollable and move on
            await queue.remove_from_queue(user_id, request.id, keep_record=True)
            continue
        if request.status is RequestStatus.PROCESSING:
            log.info("queue_head_in_flight", user_id=user_id, request_id=request.id)
            return ProcessOutcome(
                status="busy",
                queue_id=request.id,
                message="Head of queue is already being processed",
            )
        break

    await queue.mark_processing(user_id, request.id)
    log.info("queue_processing", user_id=user_id, request_id=request.id, path=request.path)

    try:
        response = await _forward(backend, request)
    except BackendUnavailableError as e:
        error = f"{e.message}: {e.details}" if e.details else e.message
        return await _fail(queue, request, error)

    if not response.ok:
        return await _fail(queue, request, describe_failure(response))

    await queue.mark_completed(user_id, request.id, response.payload)
    await queue.remove_from_queue(user_id, request.id, keep_record=True)
    log.info("queue_request_completed", user_id=user_id, request_id=request.id)
    return ProcessOutcome(status="processed", queue_id=request.id, result=response.payload)


async def drain(
    queue: RequestQueue,
    backend: BackendClient,
    user_id: str,
    *,
    max_jobs: int | None = None,
) -> list[ProcessOutcome]:
    """Process queued requests until the queue is empty or max_jobs is reached."""
    outcomes: list[ProcessOutcome] = []
    limit = max_jobs if max_jobs is not None else queue.max_size
    while len(outcomes) < limit:
        outcome = await process_next(queue, backend, user_id)
        if outcome.status in ("no_requests", "busy"):
            break
        outcomes.append(outcome)
    log.info("queue_drained", user_id=user_id, processed=len(outcomes))
    return outcomes
