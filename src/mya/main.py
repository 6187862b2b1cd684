"""Entry points shared by the gateway, the worker and the CLI."""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer()
            if sys.stderr.isatty()
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the gateway.

    Args:
        host: Host to bind to (defaults to settings.server_host)
        port: Port to listen on (defaults to settings.server_port)
    """
    import uvicorn

    from mya import __version__
    from mya.config import settings
    from mya.gateway.app import create_app

    configure_logging(settings.log_level)
    log = structlog.get_logger()

    host = host or settings.server_host
    port = port or settings.server_port

    log.info(
        "Starting MYA gateway",
        version=__version__,
        environment=settings.environment,
        host=host,
        port=port,
        backend_configured=bool(settings.llm_url),
        kv_url=settings.kv_url.split("@")[-1],
    )
    if not settings.jwt_secret.get_secret_value():
        log.warning("jwt_secret_missing", hint="Set MYA_JWT_SECRET; logins will fail with 503")

    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())
