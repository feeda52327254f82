"""Runtime settings with typed configuration and fail-fast validation.

Settings are read once at startup and passed explicitly into the objects
that need them; request handlers never look at the environment.

``ExporterSettings`` reads ``PGBOUNCER_EXPORTER_*`` variables. The basic
auth pair lives in its own ``BasicAuthSettings`` model because it is read
from ``BASIC_AUTH_USER`` / ``BASIC_AUTH_PASS`` and never from flags.

Examples
--------
>>> from exporter_common.settings import load_settings
>>> settings = load_settings(listen_port=9100)
>>> settings.metrics_path
'/metrics'
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from exporter_common.errors import SettingsError
from exporter_common.logging import get_logger, parse_level

__all__ = [
    "DEFAULT_CONNECTION_STRING",
    "DEFAULT_LISTEN_PORT",
    "DEFAULT_METRICS_PATH",
    "BasicAuthSettings",
    "Credentials",
    "ExporterSettings",
    "load_credentials",
    "load_settings",
]

logger = get_logger(__name__)

DEFAULT_CONNECTION_STRING = "postgres://postgres:@localhost:6543/pgbouncer?sslmode=disable"
DEFAULT_LISTEN_PORT = 9584
DEFAULT_METRICS_PATH = "/metrics"


@dataclass(frozen=True, slots=True)
class Credentials:
    """Expected basic-auth pair, compared verbatim against request credentials."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class ExporterSettings(BaseSettings):
    """Exporter configuration (``PGBOUNCER_EXPORTER_*`` namespace)."""

    model_config = SettingsConfigDict(
        env_prefix="PGBOUNCER_EXPORTER_",
        extra="forbid",
        case_sensitive=False,
        frozen=True,
    )

    connection_string: str = Field(
        default=DEFAULT_CONNECTION_STRING,
        description="Connection string for the PgBouncer admin console",
    )
    connect_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait when connecting to PgBouncer"
    )
    listen_host: str = Field(
        default="0.0.0.0",  # noqa: S104 - exporters listen on all interfaces by default
        description="Address to bind the web interface to",
    )
    listen_port: int = Field(
        default=DEFAULT_LISTEN_PORT,
        ge=1,
        le=65535,
        description="Port to listen on for web interface and telemetry",
    )
    metrics_path: str = Field(
        default=DEFAULT_METRICS_PATH, description="Path under which to expose metrics"
    )
    pid_file: Path | None = Field(
        default=None,
        description="PgBouncer pid file; enables the pgbouncer_process_* metrics",
    )
    log_level: str = Field(default="info", description="Log level (debug, info, warn, error)")

    @field_validator("metrics_path")
    @classmethod
    def _check_metrics_path(cls, value: str) -> str:
        if not value.startswith("/"):
            message = "metrics path must start with '/'"
            raise ValueError(message)
        if value == "/":
            message = "metrics path must not be '/', which serves the index page"
            raise ValueError(message)
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        parse_level(value)
        return value.strip().lower()

    @field_validator("pid_file", mode="before")
    @classmethod
    def _empty_pid_file_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def level(self) -> int:
        """Return the configured log level as a :mod:`logging` constant."""
        return parse_level(self.log_level)


class BasicAuthSettings(BaseSettings):
    """Basic-auth pair read from ``BASIC_AUTH_USER`` and ``BASIC_AUTH_PASS``.

    Unset variables leave the pair empty, which no request can match.
    """

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=False, frozen=True)

    basic_auth_user: str = Field(default="", description="Expected basic-auth username")
    basic_auth_pass: str = Field(default="", description="Expected basic-auth password")

    def credentials(self) -> Credentials:
        """Return the configured pair as immutable :class:`Credentials`."""
        return Credentials(username=self.basic_auth_user, password=self.basic_auth_pass)


def _validation_errors(exc: ValidationError) -> list[dict[str, object]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "issue": error["msg"]}
        for error in exc.errors()
    ]


def load_settings(**overrides: object) -> ExporterSettings:
    """Load :class:`ExporterSettings`, with explicit overrides taking precedence.

    Overrides whose value is ``None`` are ignored so CLI options that were not
    given fall back to the environment and defaults.

    Parameters
    ----------
    **overrides : object
        Field values that take precedence over the environment.

    Returns
    -------
    ExporterSettings
        Validated settings.

    Raises
    ------
    SettingsError
        If validation fails.
    """
    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        return ExporterSettings(**explicit)  # type: ignore[arg-type]  # BaseSettings accepts field kwargs
    except ValidationError as exc:
        errors = _validation_errors(exc)
        logger.exception(
            "Settings validation failed",
            extra={"operation": "load_settings", "error_type": type(exc).__name__},
        )
        msg = "Configuration validation failed: " + "; ".join(
            f"{error['field']}: {error['issue']}" for error in errors
        )
        raise SettingsError(msg, errors=errors, cause=exc) from exc


def load_credentials() -> Credentials:
    """Read the expected basic-auth pair from the environment.

    Returns
    -------
    Credentials
        The configured pair (empty strings when unset).
    """
    return BasicAuthSettings().credentials()
