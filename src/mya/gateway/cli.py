"""Operator CLI for the gateway: serve, run the worker, drain a queue."""

import asyncio
from typing import Annotated

import typer

from mya.cli.common import NEON_CYAN, console, create_table, error, info, success

app = typer.Typer(
    name="mya-gateway",
    help="MYA gateway - auth, rate limiting, and queued backend access",
    add_completion=False,
    no_args_is_help=True,
)


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", "-h", help="Host to bind to")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to listen on")] = None,
) -> None:
    """Start the gateway HTTP server.

    Examples:
        mya-gateway serve                 # Defaults from MYA_SERVER_HOST / MYA_SERVER_PORT
        mya-gateway serve -h 0.0.0.0      # Listen on all interfaces
    """
    from mya.main import run_server

    try:
        run_server(host=host, port=port)
    except KeyboardInterrupt:
        console.print(f"\n[{NEON_CYAN}]Shutting down...[/{NEON_CYAN}]")


@app.command()
def worker() -> None:
    """Run the arq worker that drains queued requests."""
    from mya.jobs.worker import run_worker_async

    try:
        asyncio.run(run_worker_async())
    except KeyboardInterrupt:
        console.print(f"\n[{NEON_CYAN}]Shutting down...[/{NEON_CYAN}]")


@app.command()
def drain(
    user: Annotated[str, typer.Option("--user", "-u", help="User id whose queue to drain")],
    max_jobs: Annotated[
        int | None, typer.Option("--max-jobs", "-n", help="Stop after this many requests")
    ] = None,
) -> None:
    """Process a user's queued requests once (for cron-style triggers)."""
    from mya.config import settings
    from mya.errors import MyaError
    from mya.gateway.consumer import drain as drain_queue
    from mya.gateway.proxy import BackendClient
    from mya.gateway.queue import RequestQueue
    from mya.kv import create_store
    from mya.main import configure_logging

    configure_logging(settings.log_level)

    async def run() -> list:
        store = create_store(settings.kv_url)
        backend = BackendClient(
            settings.llm_url,
            settings.llm_api_token.get_secret_value(),
            timeout=settings.backend_timeout_seconds,
        )
        queue = RequestQueue(
            store,
            max_size=settings.queue_max_size,
            ttl_seconds=settings.queue_ttl_seconds,
        )
        try:
            return await drain_queue(queue, backend, user, max_jobs=max_jobs)
        finally:
            await backend.close()

    try:
        outcomes = asyncio.run(run())
    except MyaError as e:
        error(e.message)
        if e.details:
            info(str(e.details))
        raise typer.Exit(1) from None

    if not outcomes:
        info(f"No pending requests for {user}")
        return

    table = create_table("Drained Requests", "Queue ID", "Status", "Error")
    for outcome in outcomes:
        table.add_row(outcome.queue_id or "-", outcome.status, outcome.error or "")
    console.print(table)
    success(f"Processed {len(outcomes)} request(s) for {user}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
