"""Pytest configuration and fixtures."""

import time

import httpx
import pytest

from mya.config import Settings
from mya.gateway.proxy import BackendClient
from mya.kv import MemoryKVStore

JWT_SECRET = "test-secret"
BACKEND_URL = "https://backend.test"
BACKEND_TOKEN = "backend-token"


class FakeClock:
    """Settable time source (epoch seconds)."""

    def __init__(self, now: float | None = None) -> None:
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Captures passcodes instead of sending them."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send_code(self, email: str, code: str, *, ttl_minutes: int) -> None:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((email, code))


class BackendRecorder:
    """httpx.MockTransport handler that records requests and replays a canned response."""

    def __init__(self, response: httpx.Response | None = None) -> None:
        self.response = response or httpx.Response(200, json={"ok": True})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryKVStore:
    return MemoryKVStore(clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


@pytest.fixture
def backend_recorder() -> BackendRecorder:
    return BackendRecorder()


@pytest.fixture
def backend(backend_recorder: BackendRecorder) -> BackendClient:
    return BackendClient(
        BACKEND_URL,
        BACKEND_TOKEN,
        transport=httpx.MockTransport(backend_recorder),
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        environment="development",
        jwt_secret=JWT_SECRET,  # type: ignore[arg-type]
        llm_url=BACKEND_URL,
        llm_api_token=BACKEND_TOKEN,  # type: ignore[arg-type]
        rate_limit_enabled=False,
    )
