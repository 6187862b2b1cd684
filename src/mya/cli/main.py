"""Main CLI application - ties all commands together.

This is the entry point for the mya CLI.
"""

import os
from typing import Annotated, Any

import structlog
import typer

from mya import __version__
from mya.cli import config_store
from mya.cli.analysis import ANALYSIS_COMMANDS, AnalysisCommand, poll_result, submit_analysis
from mya.cli.auth import ensure_authenticated, login_flow, validate_session
from mya.cli.client import MyaClient, get_client
from mya.cli.common import (
    ELECTRIC_PURPLE,
    NEON_CYAN,
    console,
    create_panel,
    create_table,
    error,
    format_status,
    hint,
    info,
    run_async,
    spinner,
    success,
    warn,
)
from mya.cli.market import market_status_message
from mya.cli.session_store import Session, clear_session, load_session, save_session
from mya.errors import MyaError

log = structlog.get_logger()

app = typer.Typer(
    name="mya",
    help="MYA - AI-powered stock and options analysis",
    add_completion=False,
    no_args_is_help=True,
)

config_app = typer.Typer(help="CLI configuration", no_args_is_help=True)
app.add_typer(config_app, name="config")


# ============================================================================
# Rendering
# ============================================================================


def render_result(result: Any, title: str = "Analysis Results") -> None:
    """Print an analysis payload."""
    if isinstance(result, dict) and result.get("aiAnalysis"):
        console.print(create_panel(str(result["aiAnalysis"]), title=title))
        symbols = result.get("symbols")
        if isinstance(symbols, list) and symbols:
            console.print(f"[{NEON_CYAN}]Symbols:[/{NEON_CYAN}] {', '.join(map(str, symbols))}")
        if result.get("timestamp"):
            console.print(f"[dim]Generated: {result['timestamp']}[/dim]")
        return
    console.print(f"[bold {ELECTRIC_PURPLE}]{title}[/bold {ELECTRIC_PURPLE}]")
    console.print_json(data=result)


async def _require_session(client: MyaClient) -> Session:
    session = await ensure_authenticated(client)
    if session is None:
        error("Authentication required")
        raise typer.Exit(1)
    return session


async def _await_result(client: MyaClient, session: Session, queue_id: str) -> None:
    with spinner() as progress:
        task = progress.add_task("Waiting for result (pending)...", total=None)

        def on_status(state: str) -> None:
            progress.update(task, description=f"Waiting for result ({state})...")

        try:
            status = await poll_result(client, session.session_jwt, queue_id, on_status=on_status)
        except MyaError as e:
            error(f"Could not fetch status for {queue_id}: {e.message}")
            raise typer.Exit(1) from None

    state = str(status.get("status", "unknown"))
    if state == "completed":
        success(f"Request {queue_id} completed")
        render_result(status.get("result"))
    elif state == "failed":
        error(f"Request {queue_id} failed: {status.get('error') or 'unknown error'}")
        raise typer.Exit(1)
    else:
        warn(f"Request {queue_id} is still {format_status(state)}")
        hint(f"Check again later with: mya results {queue_id}")


async def _run_analysis(command: AnalysisCommand, wait: bool) -> None:
    client = get_client()
    session = await _require_session(client)
    console.print(market_status_message())

    try:
        with spinner() as progress:
            progress.add_task(command.progress, total=None)
            submission = await submit_analysis(client, session, command)
    except MyaError as e:
        error(f"{command.name} request failed: {e.message}")
        raise typer.Exit(1) from None

    if not submission.queued:
        success(f"{command.name} completed")
        render_result(submission.result)
        return

    queue_id = submission.queue_id or ""
    session.last_request_id = queue_id
    save_session(session)
    info(f"Request queued: [{NEON_CYAN}]{queue_id}[/{NEON_CYAN}]")

    if not wait:
        hint("Fetch the result with: mya results")
        return
    await _await_result(client, session, queue_id)


def _register_analysis_command(command: AnalysisCommand) -> None:
    def run(
        wait: Annotated[
            bool, typer.Option("--wait/--no-wait", help="Poll until the result is ready")
        ] = True,
    ) -> None:
        run_async(_run_analysis)(command, wait)

    run.__name__ = command.name
    run.__doc__ = command.description
    app.command(name=command.name, help=command.description)(run)


for _command in ANALYSIS_COMMANDS.values():
    _register_analysis_command(_command)


# ============================================================================
# Session commands
# ============================================================================


@app.command()
def login(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Log in again even with a valid session")
    ] = False,
) -> None:
    """Authenticate with an emailed one-time code."""

    @run_async
    async def _login() -> None:
        client = get_client()
        session = load_session()
        if session is not None and not force:
            if await validate_session(client, session):
                save_session(session)
                info(f"Already logged in as {session.email}")
                hint("Use --force to log in again")
                return
            clear_session()
        elif session is not None:
            clear_session()

        if await login_flow(client) is None:
            raise typer.Exit(1)
        success("Logged in successfully")

    _login()


@app.command()
def logout() -> None:
    """End the current session."""

    @run_async
    async def _logout() -> None:
        session = load_session()
        if session is None:
            info("Not logged in")
            return
        try:
            await get_client().logout(session.session_jwt, session.user_id, session.machine_id)
        except MyaError as e:
            # Local logout proceeds regardless of the gateway
            log.debug("remote_logout_failed", error=e.message)
        clear_session()
        success("Logged out")

    _logout()


@app.command()
def status() -> None:
    """Show login, market and gateway status."""

    @run_async
    async def _status() -> None:
        session = load_session()
        table = create_table("MYA Status", "Item", "Value")
        if session is not None:
            table.add_row("Authentication", "Logged in")
            table.add_row("User ID", session.user_id)
            table.add_row("Email", session.email)
            if session.last_request_id:
                table.add_row("Last request", session.last_request_id)
        else:
            table.add_row("Authentication", "Not logged in (run: mya login)")
        table.add_row("Market", market_status_message())

        client = get_client()
        table.add_row("Gateway", client.base_url)
        table.add_row("Gateway health", "reachable" if await client.health() else "unreachable")

        if session is not None:
            try:
                stats = await client.queue_stats(session.session_jwt)
            except MyaError as e:
                log.debug("queue_stats_unavailable", error=e.message)
            else:
                table.add_row(
                    "Queue",
                    f"{stats.get('pendingRequests', 0)} pending, "
                    f"{stats.get('processingRequests', 0)} processing, "
                    f"{stats.get('completedRequests', 0)} completed, "
                    f"{stats.get('failedRequests', 0)} failed",
                )
        console.print(table)

    _status()


@app.command()
def results(
    request_id: Annotated[
        str | None, typer.Argument(help="Queue id (default: the most recent request)")
    ] = None,
    wait: Annotated[
        bool, typer.Option("--wait/--no-wait", help="Poll until the result is ready")
    ] = True,
) -> None:
    """Show the result of a queued analysis."""

    @run_async
    async def _results() -> None:
        client = get_client()
        session = await _require_session(client)
        queue_id = request_id or session.last_request_id
        if not queue_id:
            error("No request id given and no previous request recorded")
            hint("Submit one with: mya analyze")
            raise typer.Exit(1)

        if wait:
            await _await_result(client, session, queue_id)
            return
        try:
            status_payload = await client.queue_status(session.session_jwt, queue_id)
        except MyaError as e:
            error(f"Could not fetch status for {queue_id}: {e.message}")
            raise typer.Exit(1) from None
        state = str(status_payload.get("status", "unknown"))
        info(f"Request {queue_id}: {format_status(state)}")
        if state == "completed":
            render_result(status_payload.get("result"))
        elif state == "failed":
            error(str(status_payload.get("error") or "unknown error"))

    _results()


@app.command()
def version() -> None:
    """Show the CLI version."""
    console.print(f"mya {__version__}")


# ============================================================================
# Config commands
# ============================================================================


@config_app.command("show")
def config_show() -> None:
    """Show the resolved gateway URL and where it comes from."""
    if os.environ.get("MYA_API_URL"):
        source = "MYA_API_URL"
    elif config_store.get("server.url"):
        source = str(config_store.config_path())
    else:
        source = f"MYA_ENV={os.environ.get('MYA_ENV', 'production')}"
    table = create_table("MYA Config", "Key", "Value")
    table.add_row("Gateway URL", config_store.get_api_url())
    table.add_row("Source", source)
    table.add_row("Config file", str(config_store.config_path()))
    console.print(table)


@config_app.command("set-url")
def config_set_url(url: Annotated[str, typer.Argument(help="Gateway base URL")]) -> None:
    """Store the gateway URL in ~/.mya/config.toml."""
    config_store.set_server_url(url)
    success(f"Gateway URL set to {url}")


@config_app.command("reset")
def config_reset() -> None:
    """Reset ~/.mya/config.toml to defaults."""
    config_store.reset_config()
    success("Config reset to defaults")


def main() -> None:
    from mya.main import configure_logging

    configure_logging(os.environ.get("MYA_LOG_LEVEL", "WARNING"))
    app()


if __name__ == "__main__":
    main()
