"""Tests for the per-user request queue."""

import json

import pytest

from mya.errors import InvalidTransitionError, QueueFullError, RequestNotFoundError
from mya.gateway.queue import RequestQueue, RequestStatus, entry_key, list_key

USER = "user_alice"


@pytest.fixture
def queue(store, clock) -> RequestQueue:
    return RequestQueue(store, max_size=3, ttl_seconds=3600, clock=clock)


async def _ids(store) -> list[str]:
    raw = await store.get(list_key(USER))
    return json.loads(raw) if raw else []


class TestEnqueue:
    """Tests for adding requests."""

    @pytest.mark.asyncio
    async def test_enqueue_creates_pending_record(self, queue, store) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "post", '{"a": 1}')

        assert request_id.startswith(f"{USER}_")
        assert await _ids(store) == [request_id]
        record = await queue.get_request_status(USER, request_id)
        assert record.status is RequestStatus.PENDING
        assert record.method == "POST"
        assert record.body == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_full_queue_rejects_without_mutation(self, queue, store) -> None:
        for _ in range(3):
            await queue.enqueue(USER, "/api/v1/analyze", "POST")
        before = await _ids(store)

        with pytest.raises(QueueFullError) as exc_info:
            await queue.enqueue(USER, "/api/v1/analyze", "POST")

        assert exc_info.value.status_code == 409
        assert "Maximum 3 requests allowed" in exc_info.value.message
        assert await _ids(store) == before
        assert len(store) == 4  # list + three records

    @pytest.mark.asyncio
    async def test_queues_are_per_user(self, queue) -> None:
        for _ in range(3):
            await queue.enqueue(USER, "/api/v1/analyze", "POST")
        assert await queue.enqueue("user_bob", "/api/v1/analyze", "POST")


class TestDequeue:
    """Tests for reading the head of the queue."""

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue) -> None:
        assert await queue.dequeue(USER) is None

    @pytest.mark.asyncio
    async def test_fifo_order_and_non_destructive(self, queue, clock) -> None:
        first = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        clock.advance(1)
        await queue.enqueue(USER, "/api/v1/double", "POST")

        assert (await queue.dequeue(USER)).id == first
        assert (await queue.dequeue(USER)).id == first

    @pytest.mark.asyncio
    async def test_skips_ids_without_records(self, queue, store) -> None:
        first = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        second = await queue.enqueue(USER, "/api/v1/double", "POST")
        await store.delete(entry_key(USER, first))

        head = await queue.dequeue(USER)

        assert head.id == second
        assert await _ids(store) == [second]

    @pytest.mark.asyncio
    async def test_all_stale_ids_are_dropped(self, queue, store) -> None:
        for _ in range(2):
            request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
            await store.delete(entry_key(USER, request_id))

        assert await queue.dequeue(USER) is None
        assert await _ids(store) == []


class TestTransitions:
    """Status moves forward only."""

    @pytest.mark.asyncio
    async def test_pending_to_completed(self, queue) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")

        await queue.mark_processing(USER, request_id)
        done = await queue.mark_completed(USER, request_id, {"aiAnalysis": "BUY"})

        assert done.status is RequestStatus.COMPLETED
        stored = await queue.get_request_status(USER, request_id)
        assert stored.result == {"aiAnalysis": "BUY"}

    @pytest.mark.asyncio
    async def test_pending_to_failed_keeps_error(self, queue) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        await queue.mark_processing(USER, request_id)
        await queue.mark_failed(USER, request_id, "Backend returned error page")

        stored = await queue.get_request_status(USER, request_id)
        assert stored.status is RequestStatus.FAILED
        assert stored.error == "Backend returned error page"

    @pytest.mark.asyncio
    async def test_cannot_skip_processing(self, queue) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        with pytest.raises(InvalidTransitionError):
            await queue.mark_completed(USER, request_id, {})

    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, queue) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        await queue.mark_processing(USER, request_id)
        await queue.mark_completed(USER, request_id, {})

        with pytest.raises(InvalidTransitionError):
            await queue.mark_processing(USER, request_id)
        with pytest.raises(InvalidTransitionError):
            await queue.mark_failed(USER, request_id, "late")

    @pytest.mark.asyncio
    async def test_missing_request(self, queue) -> None:
        with pytest.raises(RequestNotFoundError):
            await queue.mark_processing(USER, "nope")


class TestRemoveAndCleanup:
    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, queue, store) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")

        await queue.remove_from_queue(USER, request_id)
        await queue.remove_from_queue(USER, request_id)

        assert await _ids(store) == []
        assert await queue.get_request_status(USER, request_id) is None

    @pytest.mark.asyncio
    async def test_remove_can_keep_record(self, queue, store) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        await queue.remove_from_queue(USER, request_id, keep_record=True)

        assert await _ids(store) == []
        assert await queue.get_request_status(USER, request_id) is not None

    @pytest.mark.asyncio
    async def test_stats_count_by_status(self, queue, store) -> None:
        done = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        busy = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        stale = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        await queue.mark_processing(USER, done)
        await queue.mark_completed(USER, done, {})
        await queue.mark_processing(USER, busy)
        await store.delete(entry_key(USER, stale))

        stats = (await queue.get_queue_stats(USER)).model_dump(by_alias=True)

        assert stats == {
            "userId": USER,
            "totalRequests": 3,
            "pendingRequests": 0,
            "processingRequests": 1,
            "completedRequests": 1,
            "failedRequests": 0,
        }

    @pytest.mark.asyncio
    async def test_clear_completed(self, queue, store) -> None:
        done = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        failed = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        pending = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        await queue.mark_processing(USER, done)
        await queue.mark_completed(USER, done, {})
        await queue.mark_processing(USER, failed)
        await queue.mark_failed(USER, failed, "boom")

        assert await queue.clear_completed(USER) == 2
        assert await _ids(store) == [pending]
        assert await queue.get_request_status(USER, done) is None

    @pytest.mark.asyncio
    async def test_entries_expire(self, queue, clock) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        clock.advance(3600)
        assert await queue.get_request_status(USER, request_id) is None
        assert await queue.dequeue(USER) is None
