from __future__ import annotations

import logging
import sys
import typing as t

import click

from mantra_pair.errors import ConfigError
from mantra_pair.utils.config import Settings

logger = logging.getLogger(__name__)


@click.command()
@click.option("--host", default=None, help="Interface to bind (defaults to HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port to listen on (defaults to PORT or 3000)")
@click.option(
    "--log-level",
    default="INFO",
    help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
def main(host: t.Optional[str], port: t.Optional[int], log_level: str) -> int:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        # Refuse to boot on bad config, encrypted exports without a secret in particular
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)
    if host:
        settings.server.host = host
    if port:
        settings.server.port = port

    from mantra_pair.app import create_app

    app = create_app(settings)

    logger.info("=" * 56)
    logger.info("Mantra-Pair Server Started")
    logger.info("Port: %s", settings.server.port)
    logger.info("Health: http://localhost:%s/health", settings.server.port)
    logger.info("Pair: POST /pair   Events: GET /pair/events/:id")
    logger.info("Exports: %s", "encrypted" if settings.export.encrypted else "plain")
    logger.info("=" * 56)

    import uvicorn

    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_level=log_level.lower())
    return 0


if __name__ == "__main__":
    main()
