"""Tests for the CLI login flow and session lifecycle."""

import json
import time

import httpx
import pytest
import typer

from mya.cli import auth as cli_auth
from mya.cli.auth import ensure_authenticated, login_flow
from mya.cli.client import MyaClient, ResilientClient
from mya.cli.session_store import Session, load_session, save_session, session_path

EMAIL = "alice@example.com"


async def no_sleep(seconds: float) -> None:
    return None


class FakeGateway:
    """MockTransport handler answering the login endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_valid = True
        self.delivered = True
        self.code_accepted = True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        if path == "/auth/verify":
            if self.token_valid:
                return httpx.Response(200, json={"valid": True, "userId": "user_alice"})
            return httpx.Response(401, json={"valid": False, "error": "Invalid or expired token"})
        if path == "/auth":
            return httpx.Response(
                200, json={"success": True, "methodId": "method_1", "delivered": self.delivered}
            )
        if path == "/verify-otp":
            if not self.code_accepted:
                return httpx.Response(401, json={"error": "Invalid OTP code"})
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "userId": "user_alice",
                    "machineId": "machine_2",
                    "sessionToken": "session_2",
                    "sessionJwt": "new-jwt",
                    "email": EMAIL,
                },
            )
        return httpx.Response(404, json={"error": "Not found"})

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture(autouse=True)
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(gateway) -> MyaClient:
    return MyaClient(
        ResilientClient(
            "https://gateway.test", transport=httpx.MockTransport(gateway), sleep=no_sleep
        )
    )


@pytest.fixture
def messages(monkeypatch) -> dict[str, list[str]]:
    recorded: dict[str, list[str]] = {"warn": [], "hint": [], "error": []}
    for name, sink in recorded.items():
        monkeypatch.setattr(cli_auth, name, sink.append)
    return recorded


def answer_prompts(monkeypatch, *answers: str) -> None:
    remaining = iter(answers)
    monkeypatch.setattr(typer, "prompt", lambda text, **kwargs: next(remaining))


def refuse_prompts(monkeypatch) -> None:
    def prompt(text, **kwargs):
        raise AssertionError(f"unexpected prompt: {text}")

    monkeypatch.setattr(typer, "prompt", prompt)


def stored_session(age: float = 3600.0) -> Session:
    """Save and return a session created ``age`` seconds ago."""
    then = time.time() - age
    session = Session.create(
        user_id="user_alice",
        machine_id="machine_1",
        session_token="session_1",
        session_jwt="old-jwt",
        email=EMAIL,
        now=then,
    )
    save_session(session, now=then)
    return session


class TestEnsureAuthenticated:
    """Tests for reusing, refreshing and replacing the saved session."""

    @pytest.mark.asyncio
    async def test_valid_session_refreshes_last_activity(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        old = stored_session()
        refuse_prompts(monkeypatch)

        session = await ensure_authenticated(client)

        assert session is not None
        assert session.session_jwt == "old-jwt"
        assert gateway.paths == ["/auth/verify"]
        assert gateway.requests[0].headers["Authorization"] == "Bearer old-jwt"
        saved = load_session()
        assert saved is not None
        assert saved.last_activity > old.last_activity
        assert saved.created_at == old.created_at
        assert messages["warn"] == []

    @pytest.mark.asyncio
    async def test_invalid_session_is_cleared_and_login_runs(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        stored_session()
        gateway.token_valid = False
        answer_prompts(monkeypatch, EMAIL, "123456")

        session = await ensure_authenticated(client)

        assert session is not None
        assert session.session_jwt == "new-jwt"
        assert gateway.paths == ["/auth/verify", "/health", "/auth", "/verify-otp"]
        assert json.loads(gateway.requests[-1].content) == {
            "email": EMAIL,
            "otpCode": "123456",
            "methodId": "method_1",
        }
        saved = load_session()
        assert saved is not None
        assert saved.session_jwt == "new-jwt"
        assert saved.machine_id == "machine_2"
        assert messages["warn"] == ["Session expired or invalid"]

    @pytest.mark.asyncio
    async def test_no_session_goes_straight_to_login(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        answer_prompts(monkeypatch, EMAIL, "123456")

        session = await ensure_authenticated(client)

        assert session is not None
        assert "/auth/verify" not in gateway.paths
        assert session_path().exists()


class TestLoginFlow:
    """Tests for the interactive passcode login."""

    @pytest.mark.asyncio
    async def test_undelivered_code_shows_fallback(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        gateway.delivered = False
        answer_prompts(monkeypatch, EMAIL, "123456")

        session = await login_flow(client)

        assert session is not None
        assert messages["warn"] == ["The code could not be emailed"]
        assert len(messages["hint"]) == 1
        assert "/test/otp/<methodId>" in messages["hint"][0]

    @pytest.mark.asyncio
    async def test_delivered_code_shows_no_fallback(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        answer_prompts(monkeypatch, EMAIL, "123456")

        assert await login_flow(client) is not None
        assert messages["warn"] == []
        assert messages["hint"] == []

    @pytest.mark.asyncio
    async def test_malformed_answers_are_asked_again(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        answer_prompts(monkeypatch, "alice", EMAIL, "12ab", "123456")

        assert await login_flow(client) is not None
        assert messages["error"] == [
            "Please enter a valid email address",
            "Please enter a valid 6-digit code",
        ]

    @pytest.mark.asyncio
    async def test_rejected_code_saves_nothing(
        self, client, gateway, messages, monkeypatch
    ) -> None:
        gateway.code_accepted = False
        answer_prompts(monkeypatch, EMAIL, "123456")

        assert await login_flow(client) is None
        assert not session_path().exists()
        assert messages["error"][0].startswith("Invalid verification code")
