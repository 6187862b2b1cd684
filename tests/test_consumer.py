"""Tests for the queue consumer."""

import json

import httpx
import pytest

from mya.errors import BackendMisconfiguredError
from mya.gateway.consumer import describe_failure, drain, process_next
from mya.gateway.proxy import BackendClient, BackendResponse
from mya.gateway.queue import RequestQueue, RequestStatus

USER = "user_alice"


@pytest.fixture
def queue(store, clock) -> RequestQueue:
    return RequestQueue(store, max_size=10, clock=clock)


class TestProcessNext:
    """Tests for processing the head of a queue."""

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue, backend) -> None:
        outcome = await process_next(queue, backend, USER)
        assert outcome.status == "no_requests"

    @pytest.mark.asyncio
    async def test_success_completes_and_unlists(self, queue, backend, backend_recorder) -> None:
        backend_recorder.response = httpx.Response(200, json={"aiAnalysis": "BUY AAPL"})
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST", '{"x": 1}')

        outcome = await process_next(queue, backend, USER)

        assert outcome.status == "processed"
        assert outcome.queue_id == request_id
        assert outcome.result == {"aiAnalysis": "BUY AAPL"}
        forwarded = backend_recorder.requests[0]
        assert forwarded.url.path == "/api/v1/analyze"
        assert forwarded.headers["X-User-Id"] == USER
        assert json.loads(forwarded.content) == {"x": 1}

        stored = await queue.get_request_status(USER, request_id)
        assert stored.status is RequestStatus.COMPLETED
        assert stored.result == {"aiAnalysis": "BUY AAPL"}
        assert (await queue.get_queue_stats(USER)).total_requests == 0

    @pytest.mark.asyncio
    async def test_html_error_page_fails_request(self, queue, backend, backend_recorder) -> None:
        backend_recorder.response = httpx.Response(502, text="<html>Bad Gateway</html>")
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")

        outcome = await process_next(queue, backend, USER)

        assert outcome.status == "failed"
        stored = await queue.get_request_status(USER, request_id)
        assert stored.status is RequestStatus.FAILED
        assert "Backend returned error page (HTTP 502)" in stored.error

    @pytest.mark.asyncio
    async def test_unreachable_backend_fails_request(self, queue) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        backend = BackendClient("https://backend.test", "tok", transport=httpx.MockTransport(refuse))
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")

        outcome = await process_next(queue, backend, USER)

        assert outcome.status == "failed"
        assert "Backend request failed" in outcome.error
        stored = await queue.get_request_status(USER, request_id)
        assert stored.status is RequestStatus.FAILED

    @pytest.mark.asyncio
    async def test_misconfigured_backend_leaves_queue_untouched(self, queue) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")

        with pytest.raises(BackendMisconfiguredError):
            await process_next(queue, BackendClient("", ""), USER)

        stored = await queue.get_request_status(USER, request_id)
        assert stored.status is RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_in_flight_head_reports_busy(self, queue, backend, backend_recorder) -> None:
        request_id = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        await queue.mark_processing(USER, request_id)

        outcome = await process_next(queue, backend, USER)

        assert outcome.status == "busy"
        assert backend_recorder.requests == []

    @pytest.mark.asyncio
    async def test_finished_head_is_skipped(self, queue, backend) -> None:
        finished = await queue.enqueue(USER, "/api/v1/analyze", "POST")
        waiting = await queue.enqueue(USER, "/api/v1/double", "POST")
        await queue.mark_processing(USER, finished)
        await queue.mark_completed(USER, finished, {"done": True})

        outcome = await process_next(queue, backend, USER)

        assert outcome.queue_id == waiting
        assert (await queue.get_request_status(USER, finished)).result == {"done": True}


class TestDrain:
    @pytest.mark.asyncio
    async def test_processes_in_fifo_order(self, queue, backend, backend_recorder, clock) -> None:
        ids = []
        for path in ("/api/v1/analyze", "/api/v1/double", "/api/v1/cmt"):
            ids.append(await queue.enqueue(USER, path, "POST"))
            clock.advance(1)

        outcomes = await drain(queue, backend, USER)

        assert [o.queue_id for o in outcomes] == ids
        assert [r.url.path for r in backend_recorder.requests] == [
            "/api/v1/analyze",
            "/api/v1/double",
            "/api/v1/cmt",
        ]

    @pytest.mark.asyncio
    async def test_max_jobs(self, queue, backend) -> None:
        for _ in range(3):
            await queue.enqueue(USER, "/api/v1/analyze", "POST")

        outcomes = await drain(queue, backend, USER, max_jobs=2)

        assert len(outcomes) == 2
        assert (await queue.get_queue_stats(USER)).pending_requests == 1


class TestDescribeFailure:
    def test_uses_detail(self) -> None:
        text = describe_failure(BackendResponse(422, {"detail": "bad symbol"}))
        assert text == "bad symbol (HTTP 422)"

    def test_non_dict_payload(self) -> None:
        assert describe_failure(BackendResponse(500, ["x"])) == "Backend returned HTTP 500"
