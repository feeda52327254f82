"""``pgbouncer-exporter`` command line.

Flag names follow the Prometheus exporter convention (``--web.listen-port``,
``--log.level``). Every flag is optional; unset flags fall back to the
``PGBOUNCER_EXPORTER_*`` environment and then to the defaults in
:mod:`exporter_common.settings`.
"""

from __future__ import annotations

import typer

from exporter_common.errors import BindError, DuplicateProducerError, SettingsError
from exporter_common.logging import get_logger, setup_logging
from exporter_common.settings import load_credentials, load_settings
from pgbouncer_exporter.app import build_registry, create_app
from pgbouncer_exporter.build_info import build_context, format_version, get_build_info
from pgbouncer_exporter.server import serve

__all__ = ["PROGRAM", "app", "main"]

PROGRAM = "pgbouncer_exporter"

LOGGER = get_logger(__name__)

app = typer.Typer(
    name="pgbouncer-exporter",
    help="Prometheus exporter for PgBouncer.",
    add_completion=False,
    no_args_is_help=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(format_version(PROGRAM))
        raise typer.Exit


@app.command()
def run(
    connection_string: str | None = typer.Option(
        None,
        "--pgBouncer.connectionString",
        envvar="PGBOUNCER_URL",
        help="Connection string for accessing pgBouncer.",
        show_default=False,
    ),
    listen_port: int | None = typer.Option(
        None,
        "--web.listen-port",
        envvar="PORT",
        help="Port to listen on for web interface and telemetry. [default: 9584]",
        show_default=False,
    ),
    listen_host: str | None = typer.Option(
        None,
        "--web.listen-host",
        help="Address to listen on for web interface and telemetry. [default: 0.0.0.0]",
        show_default=False,
    ),
    metrics_path: str | None = typer.Option(
        None,
        "--web.telemetry-path",
        help="Path under which to expose metrics. [default: /metrics]",
        show_default=False,
    ),
    pid_file: str | None = typer.Option(
        None,
        "--pgBouncer.pid-file",
        help="Path to PgBouncer pid file. Enables the pgbouncer_process_* metrics.",
        show_default=False,
    ),
    log_level: str | None = typer.Option(
        None,
        "--log.level",
        help="Only log messages with the given severity or above: debug, info, warn, error.",
        show_default=False,
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show application version.",
    ),
) -> None:
    """Serve PgBouncer metrics until interrupted.

    Raises
    ------
    typer.Exit
        With code 1 when the configuration is invalid, a producer cannot be
        registered or the listen address cannot be bound.
    """
    del version
    try:
        settings = load_settings(
            connection_string=connection_string,
            listen_port=listen_port,
            listen_host=listen_host,
            metrics_path=metrics_path,
            pid_file=pid_file,
            log_level=log_level,
        )
    except SettingsError as exc:
        typer.echo(f"{PROGRAM}: {exc.message}", err=True)
        raise typer.Exit(code=1) from exc

    setup_logging(settings.level)
    info = get_build_info()
    LOGGER.info(
        "Starting pgbouncer_exporter",
        extra={"operation": "startup", "version": info.version, "build_context": build_context(info)},
    )

    credentials = load_credentials()
    if not credentials.username or not credentials.password:
        LOGGER.warning(
            "BASIC_AUTH_USER or BASIC_AUTH_PASS is not set; every request will be rejected",
            extra={"operation": "startup"},
        )

    try:
        registry = build_registry(settings)
    except DuplicateProducerError as exc:
        LOGGER.critical("Cannot register producers: %s", exc.message, extra=exc.log_fields())
        raise typer.Exit(code=1) from exc

    application = create_app(
        registry, credentials=credentials, metrics_path=settings.metrics_path
    )
    try:
        serve(
            application,
            host=settings.listen_host,
            port=settings.listen_port,
            log_level=settings.level,
        )
    except BindError as exc:
        LOGGER.error("Error starting HTTP server: %s", exc.message, extra=exc.log_fields())
        raise typer.Exit(code=1) from exc


def main() -> None:
    """Console-script entry point."""
    app()
