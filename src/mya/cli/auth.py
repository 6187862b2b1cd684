"""Interactive passcode login and session validation."""

from __future__ import annotations

import re

import typer

from mya.cli.client import MyaClient
from mya.cli.common import error, hint, info, spinner, success, troubleshooting, warn
from mya.cli.session_store import Session, clear_session, load_session, save_session
from mya.errors import HttpError, MyaError

CODE_RE = re.compile(r"^\d{6}$")

CONNECTIVITY_STEPS = [
    "Check your internet connection",
    "Verify the gateway URL with: mya config show",
    "The service may be temporarily down - try again in a few minutes",
]
BACKEND_STEPS = [
    "Verify the backend service (mya-llm) is running",
    "Check that the gateway's MYA_LLM_URL and LLM_API_TOKEN are configured",
    "Check the gateway logs for proxy errors",
]


def prompt_email() -> str:
    while True:
        email = typer.prompt("Enter your email").strip()
        if "@" in email:
            return email
        error("Please enter a valid email address")


def prompt_code() -> str:
    while True:
        code = typer.prompt("Enter the 6-digit code from your email").strip()
        if CODE_RE.match(code):
            return code
        error("Please enter a valid 6-digit code")


async def validate_session(client: MyaClient, session: Session) -> bool:
    """Ask the gateway whether the session token is still valid."""
    try:
        return await client.verify_token(session.session_jwt)
    except MyaError:
        return False


def _report_failure(step: str, exc: MyaError) -> None:
    error(f"{step}: {exc.message}")
    if isinstance(exc, HttpError) and exc.status_code == 503:
        troubleshooting("backend service issues", BACKEND_STEPS)


async def login_flow(client: MyaClient) -> Session | None:
    """Run the interactive passcode login. Returns the saved session, or None."""
    with spinner() as progress:
        progress.add_task("Checking service availability...", total=None)
        available = await client.health()
    if not available:
        error("Gateway is not reachable")
        troubleshooting(
            "gateway unreachable", [*CONNECTIVITY_STEPS, f"Gateway URL: {client.base_url}"]
        )
        return None

    email = prompt_email()
    try:
        with spinner() as progress:
            progress.add_task("Sending authentication code...", total=None)
            auth_result = await client.request_code(email)
    except MyaError as e:
        _report_failure("Authentication request failed", e)
        return None

    method_id = auth_result.get("methodId") or auth_result.get("method_id")
    if not method_id:
        error("Authentication failed: no method ID received")
        return None
    if auth_result.get("delivered", True):
        success("Authentication code sent")
    else:
        warn("The code could not be emailed")
        hint("Ask an operator for the code, or use /test/otp/<methodId> on a development gateway")
        info(f"Method ID: {method_id}")

    code = prompt_code()
    try:
        with spinner() as progress:
            progress.add_task("Verifying code and creating session...", total=None)
            result = await client.verify_otp(email, code, method_id)
    except HttpError as e:
        if e.status_code == 401:
            error("Invalid verification code. Please check your email and try again.")
            hint("Codes are single-use and expire after 15 minutes.")
        else:
            _report_failure("Session creation failed", e)
        return None
    except MyaError as e:
        _report_failure("Session creation failed", e)
        return None

    session = Session.create(
        user_id=result.get("userId", ""),
        machine_id=result.get("machineId", ""),
        session_token=result.get("sessionToken", ""),
        session_jwt=result.get("sessionJwt", ""),
        email=email,
    )
    save_session(session)
    success("Session created successfully")
    return session


async def ensure_authenticated(client: MyaClient) -> Session | None:
    """Return a validated session, logging in interactively when needed."""
    session = load_session()
    if session is not None:
        with spinner() as progress:
            progress.add_task("Validating session...", total=None)
            valid = await validate_session(client, session)
        if valid:
            save_session(session)
            return session
        warn("Session expired or invalid")
        clear_session()

    info("Please authenticate to continue")
    return await login_flow(client)
