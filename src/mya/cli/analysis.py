"""Analysis submission and result polling.

Heavy analyses are queued by the gateway: submitting returns a queue id that
is polled until the request is completed or failed. Light ones come back with
the result immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mya.cli.client import MyaClient
from mya.cli.session_store import Session

TERMINAL_STATUSES = ("completed", "failed")


@dataclass(frozen=True)
class AnalysisCommand:
    name: str
    endpoint: str
    analysis_type: str
    description: str
    progress: str


ANALYSIS_COMMANDS: dict[str, AnalysisCommand] = {
    "analyze": AnalysisCommand(
        "analyze",
        "/analyze",
        "cmt_analysis",
        "Comprehensive market analysis with CMT technical analysis",
        "Submitting market analysis...",
    ),
    "double": AnalysisCommand(
        "double",
        "/double",
        "double_cmt",
        "Double-top and double-bottom pattern analysis",
        "Submitting double pattern analysis...",
    ),
    "earnings": AnalysisCommand(
        "earnings",
        "/analyze",
        "earnings_cmt",
        "Earnings analysis and screening for upcoming opportunities",
        "Submitting earnings analysis...",
    ),
    "announcements": AnalysisCommand(
        "announcements",
        "/announcements",
        "announcements_cmt",
        "Market news review and fundamentals data collection",
        "Reviewing market news and fundamentals data...",
    ),
    "benchmark": AnalysisCommand(
        "benchmark",
        "/benchmark",
        "benchmark",
        "Benchmark recent recommendations against market performance",
        "Submitting benchmark run...",
    ),
}


@dataclass
class Submission:
    queued: bool
    queue_id: str | None = None
    result: Any = None


async def submit_analysis(
    client: MyaClient,
    session: Session,
    command: AnalysisCommand,
    parameters: dict[str, Any] | None = None,
) -> Submission:
    """Submit an analysis; the gateway either queues it or answers directly."""
    body = {
        "userId": session.user_id,
        "machineId": session.machine_id,
        "analysisType": command.analysis_type,
        "parameters": parameters or {},
    }
    response = await client.submit(command.endpoint, session.session_jwt, body)
    if isinstance(response, dict) and response.get("status") == "queued" and response.get("queueId"):
        return Submission(queued=True, queue_id=response["queueId"])
    if isinstance(response, dict) and "result" in response:
        return Submission(queued=False, result=response["result"])
    return Submission(queued=False, result=response)


async def poll_result(
    client: MyaClient,
    token: str,
    queue_id: str,
    *,
    interval: float = 2.0,
    max_polls: int = 150,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_status: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Poll a queued request until it completes or fails.

    Pending and processing are interim states reported through on_status.
    Returns the last status payload, which is still non-terminal if max_polls
    ran out first.
    """
    status: dict[str, Any] = {}
    for poll in range(max_polls):
        status = await client.queue_status(token, queue_id)
        state = str(status.get("status", ""))
        if on_status is not None:
            on_status(state)
        if state in TERMINAL_STATUSES:
            return status
        if poll < max_polls - 1:
            await sleep(interval)
    return status
