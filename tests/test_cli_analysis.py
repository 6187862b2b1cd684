"""Tests for analysis submission and polling."""

import json

import httpx
import pytest

from mya.cli.analysis import ANALYSIS_COMMANDS, poll_result, submit_analysis
from mya.cli.client import MyaClient, ResilientClient
from mya.cli.session_store import Session


async def no_sleep(seconds: float) -> None:
    return None


def make_client(handler) -> MyaClient:
    return MyaClient(
        ResilientClient("https://gateway.test", transport=httpx.MockTransport(handler), sleep=no_sleep)
    )


@pytest.fixture
def session() -> Session:
    return Session.create(
        user_id="user_alice",
        machine_id="machine_1",
        session_token="session_1",
        session_jwt="jwt",
        email="alice@example.com",
    )


class TestSubmitAnalysis:
    @pytest.mark.asyncio
    async def test_queued_submission(self, session) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"status": "queued", "queueId": "q1"})

        submission = await submit_analysis(
            make_client(handler), session, ANALYSIS_COMMANDS["earnings"]
        )

        assert submission.queued is True
        assert submission.queue_id == "q1"
        assert seen[0].url.path == "/analyze"
        assert json.loads(seen[0].content) == {
            "userId": "user_alice",
            "machineId": "machine_1",
            "analysisType": "earnings_cmt",
            "parameters": {},
        }

    @pytest.mark.asyncio
    async def test_direct_result(self, session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"aiAnalysis": "Quiet day"})

        submission = await submit_analysis(
            make_client(handler), session, ANALYSIS_COMMANDS["announcements"]
        )

        assert submission.queued is False
        assert submission.result == {"aiAnalysis": "Quiet day"}


class TestPollResult:
    @pytest.mark.asyncio
    async def test_polls_until_terminal(self) -> None:
        states = iter(["pending", "processing", "completed"])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"queueId": "q1", "status": next(states), "result": 1})

        seen: list[str] = []
        status = await poll_result(
            make_client(handler), "jwt", "q1", sleep=no_sleep, on_status=seen.append
        )

        assert status["status"] == "completed"
        assert seen == ["pending", "processing", "completed"]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_polls(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"queueId": "q1", "status": "pending"})

        status = await poll_result(make_client(handler), "jwt", "q1", max_polls=3, sleep=no_sleep)

        assert status["status"] == "pending"
        assert len(calls) == 3
        assert calls[0].url.path == "/queue/status/q1"
