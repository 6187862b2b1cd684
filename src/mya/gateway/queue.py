"""Per-user FIFO request queue backed by the key-value store.

Each user has an ordered id list under ``queue:{user_id}:queue`` and one record
per request under ``queue:{user_id}:{request_id}``. Both carry a TTL, so an
abandoned request eventually disappears; readers treat a listed id with no
record as stale and skip it.

The list is updated read-modify-write without a lock. Two concurrent enqueues
for the same user can lose one id; the orphaned record then expires via TTL and
the submitter never sees it complete.
"""

import json
import secrets
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from mya.errors import InvalidTransitionError, QueueFullError, RequestNotFoundError
from mya.kv import KVStore

log = structlog.get_logger()

QUEUE_PREFIX = "queue:"
DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_SECONDS = 3600


class RequestStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.FAILED})

# Allowed moves; anything else would skip processing or go backwards
_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.PROCESSING}),
    RequestStatus.PROCESSING: frozenset({RequestStatus.COMPLETED, RequestStatus.FAILED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.FAILED: frozenset(),
}


class QueuedRequest(BaseModel):
    """A submitted request and its processing state."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    path: str
    method: str
    body: str | None = None
    timestamp: float
    status: RequestStatus = RequestStatus.PENDING
    result: Any = None
    error: str | None = None


class QueueStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    total_requests: int = Field(alias="totalRequests")
    pending_requests: int = Field(default=0, alias="pendingRequests")
    processing_requests: int = Field(default=0, alias="processingRequests")
    completed_requests: int = Field(default=0, alias="completedRequests")
    failed_requests: int = Field(default=0, alias="failedRequests")


def list_key(user_id: str) -> str:
    return f"{QUEUE_PREFIX}{user_id}:queue"


def entry_key(user_id: str, request_id: str) -> str:
    return f"{QUEUE_PREFIX}{user_id}:{request_id}"


class RequestQueue:
    """Per-user FIFO queue with status tracking."""

    def __init__(
        self,
        store: KVStore,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    # Storage helpers

    async def _load_ids(self, user_id: str) -> list[str]:
        raw = await self._store.get(list_key(user_id))
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("queue_list_corrupt", user_id=user_id)
            return []
        return [str(i) for i in ids] if isinstance(ids, list) else []

    async def _save_ids(self, user_id: str, ids: list[str]) -> None:
        await self._store.put(list_key(user_id), json.dumps(ids), ttl_seconds=self.ttl_seconds)

    async def _load(self, user_id: str, request_id: str) -> QueuedRequest | None:
        raw = await self._store.get(entry_key(user_id, request_id))
        if raw is None:
            return None
        return QueuedRequest.model_validate_json(raw)

    async def _save(self, request: QueuedRequest) -> None:
        await self._store.put(
            entry_key(request.user_id, request.id),
            request.model_dump_json(by_alias=True),
            ttl_seconds=self.ttl_seconds,
        )

    # Queue operations

    async def enqueue(self, user_id: str, path: str, method: str, body: str | None = None) -> str:
        """Append a request to the user's queue.

        Args:
            user_id: Owner of the queue
            path: Backend path to call when processed (e.g. /api/v1/analyze)
            method: HTTP method for the backend call
            body: Serialized request body, passed through untouched

        Returns:
            The new request id

        Raises:
            QueueFullError: The user already has max_size requests queued
        """
        ids = await self._load_ids(user_id)
        if len(ids) >= self.max_size:
            log.warning("queue_full", user_id=user_id, size=len(ids), max_size=self.max_size)
            raise QueueFullError(user_id, self.max_size)

        now = self._clock()
        request_id = f"{user_id}_{int(now * 1000)}_{secrets.token_hex(5)}"
        request = QueuedRequest(
            id=request_id,
            user_id=user_id,
            path=path,
            method=method.upper(),
            body=body,
            timestamp=now,
        )

        ids.append(request_id)
        await self._save_ids(user_id, ids)
        await self._save(request)

        log.info("request_enqueued", user_id=user_id, request_id=request_id, queue_size=len(ids))
        return request_id

    async def dequeue(self, user_id: str) -> QueuedRequest | None:
        """Return the head of the user's queue without removing it.

        Listed ids whose records have expired or been removed are dropped from
        the list until a live record is found or the list is exhausted.
        """
        ids = await self._load_ids(user_id)
        dropped = 0
        request = None
        while ids:
            request = await self._load(user_id, ids[0])
            if request is not None:
                break
            log.debug("queue_skip_stale", user_id=user_id, request_id=ids[0])
            ids.pop(0)
            dropped += 1

        if dropped:
            await self._save_ids(user_id, ids)
        return request

    async def _transition(
        self,
        user_id: str,
        request_id: str,
        target: RequestStatus,
        **changes: Any,
    ) -> QueuedRequest:
        request = await self._load(user_id, request_id)
        if request is None:
            raise RequestNotFoundError(user_id, request_id)
        if target not in _TRANSITIONS[request.status]:
            raise InvalidTransitionError(request_id, request.status.value, target.value)

        updated = request.model_copy(update={"status": target, **changes})
        await self._save(updated)
        log.info(
            "request_transition",
            user_id=user_id,
            request_id=request_id,
            from_status=request.status.value,
            to_status=target.value,
        )
        return updated

    async def mark_processing(self, user_id: str, request_id: str) -> QueuedRequest:
        return await self._transition(user_id, request_id, RequestStatus.PROCESSING)

    async def mark_completed(self, user_id: str, request_id: str, result: Any) -> QueuedRequest:
        return await self._transition(user_id, request_id, RequestStatus.COMPLETED, result=result)

    async def mark_failed(self, user_id: str, request_id: str, error: str) -> QueuedRequest:
        return await self._transition(user_id, request_id, RequestStatus.FAILED, error=str(error))

    async def remove_from_queue(
        self, user_id: str, request_id: str, *, keep_record: bool = False
    ) -> None:
        """Strip request_id from the user's list and delete its record.

        Idempotent. With keep_record the record stays readable until its TTL so
        a finished request can still be polled.
        """
        ids = await self._load_ids(user_id)
        if request_id in ids:
            ids.remove(request_id)
            await self._save_ids(user_id, ids)
        if not keep_record:
            await self._store.delete(entry_key(user_id, request_id))
        log.info("request_removed", user_id=user_id, request_id=request_id, kept=keep_record)

    async def get_request_status(self, user_id: str, request_id: str) -> QueuedRequest | None:
        return await self._load(user_id, request_id)

    async def get_queue_stats(self, user_id: str) -> QueueStats:
        """Count listed requests by status, ignoring ids with no record."""
        ids = await self._load_ids(user_id)
        counts = dict.fromkeys(RequestStatus, 0)
        for request_id in ids:
            request = await self._load(user_id, request_id)
            if request is not None:
                counts[request.status] += 1

        return QueueStats(
            user_id=user_id,
            total_requests=len(ids),
            pending_requests=counts[RequestStatus.PENDING],
            processing_requests=counts[RequestStatus.PROCESSING],
            completed_requests=counts[RequestStatus.COMPLETED],
            failed_requests=counts[RequestStatus.FAILED],
        )

    async def clear_completed(self, user_id: str) -> int:
        """Delete every completed or failed request and compact the list."""
        ids = await self._load_ids(user_id)
        remaining: list[str] = []
        removed = 0
        for request_id in ids:
            request = await self._load(user_id, request_id)
            if request is not None and request.status in TERMINAL_STATUSES:
                await self._store.delete(entry_key(user_id, request_id))
                removed += 1
            else:
                remaining.append(request_id)

        if removed:
            await self._save_ids(user_id, remaining)
        log.info("queue_cleanup", user_id=user_id, removed=removed)
        return removed
