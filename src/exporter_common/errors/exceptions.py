"""Typed exception hierarchy for the exporter.

All exporter exceptions inherit from :class:`ExporterError`, which carries a
stable error code, the HTTP status used when the error escapes a request
handler, the log level it should be reported at, and structured context.

Examples
--------
>>> from exporter_common.errors import CollectorError, ErrorCode
>>> try:
...     raise CollectorError("pid file missing", cause=FileNotFoundError("/run/pgbouncer.pid"))
... except CollectorError as e:
...     assert e.code == ErrorCode.COLLECTION_FAILED
...     assert e.http_status == 503
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from exporter_common.errors.codes import ErrorCode

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "AuthenticationError",
    "BindError",
    "CollectorError",
    "DuplicateProducerError",
    "ExporterError",
    "RegistryClosedError",
    "SettingsError",
]


class ExporterError(Exception):
    """Base exception for all exporter errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode, optional
        Stable error code. Defaults to ``ErrorCode.RUNTIME_ERROR``.
    http_status : int, optional
        HTTP status used when the error escapes a request handler.
        Defaults to 500.
    log_level : int, optional
        Logging level used when the error is reported. Defaults to
        ``logging.ERROR``.
    cause : Exception | None, optional
        Underlying exception, chained as ``__cause__``. Defaults to None.
    context : Mapping[str, object] | None, optional
        Additional structured context for log records. Defaults to None.

    Attributes
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode
        Error code enum value.
    http_status : int
        HTTP status code.
    log_level : int
        Logging level for error reporting.
    context : dict[str, object]
        Additional context dictionary for error details.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.RUNTIME_ERROR,
        http_status: int = 500,
        log_level: int = logging.ERROR,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.log_level = log_level
        self.context: dict[str, object] = dict(context) if context else {}
        if cause is not None:
            self.__cause__ = cause

    def log_fields(self) -> dict[str, object]:
        """Return structured fields describing this error for log records.

        Returns
        -------
        dict[str, object]
            ``error_code``, ``error_type`` and any context entries.
        """
        fields: dict[str, object] = {
            "error_code": self.code.value,
            "error_type": type(self).__name__,
        }
        if self.__cause__ is not None:
            fields["error_cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        fields.update(self.context)
        return fields

    def __str__(self) -> str:
        """Return formatted error string.

        Returns
        -------
        str
            Formatted error string (e.g., "BindError[bind-failed]: cannot bind :9584").
        """
        base = f"{self.__class__.__name__}[{self.code.value}]: {self.message}"
        if self.__cause__:
            base += f" (caused by: {type(self.__cause__).__name__})"
        return base


class AuthenticationError(ExporterError):
    """Request did not carry acceptable basic credentials.

    Uses error code AUTHENTICATION_FAILED and HTTP status 401. Logged at
    DEBUG: rejected scrapes are routine and must not flood the log.

    Parameters
    ----------
    reason : str
        Internal reason for the rejection. Logged, never sent to the client.
    """

    public_message = "Unauthorized."

    def __init__(self, reason: str) -> None:
        super().__init__(
            reason,
            code=ErrorCode.AUTHENTICATION_FAILED,
            http_status=401,
            log_level=logging.DEBUG,
        )


class CollectorError(ExporterError):
    """A producer's collect pass failed.

    Uses error code COLLECTION_FAILED and HTTP status 503. The registry
    recovers from it per producer; it only reaches a response when a caller
    collects a producer directly.

    Parameters
    ----------
    message : str
        Human-readable error message.
    cause : Exception | None, optional
        Underlying exception. Defaults to None.
    context : Mapping[str, object] | None, optional
        Additional context dictionary. Defaults to None.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.COLLECTION_FAILED,
            http_status=503,
            cause=cause,
            context=context,
        )


class DuplicateProducerError(ExporterError):
    """A producer (or one of its metric names) is already registered.

    Raised at startup only. Uses error code DUPLICATE_PRODUCER and CRITICAL
    log level since it aborts startup.

    Parameters
    ----------
    message : str
        Human-readable error message.
    context : Mapping[str, object] | None, optional
        Additional context dictionary. Defaults to None.
    """

    def __init__(self, message: str, context: Mapping[str, object] | None = None) -> None:
        super().__init__(
            message,
            code=ErrorCode.DUPLICATE_PRODUCER,
            log_level=logging.CRITICAL,
            context=context,
        )


class RegistryClosedError(ExporterError):
    """Registration attempted after the registry was sealed."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            code=ErrorCode.REGISTRY_CLOSED,
            log_level=logging.CRITICAL,
        )


class BindError(ExporterError):
    """The HTTP listener could not bind its address.

    Parameters
    ----------
    message : str
        Human-readable error message.
    cause : Exception | None, optional
        Underlying ``OSError``. Defaults to None.
    context : Mapping[str, object] | None, optional
        Additional context dictionary (host, port). Defaults to None.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.BIND_FAILED,
            log_level=logging.CRITICAL,
            cause=cause,
            context=context,
        )


class SettingsError(ExporterError):
    """Error raised when settings validation fails.

    Uses error code CONFIGURATION_ERROR. Validation errors are merged into
    the context under ``errors``.

    Parameters
    ----------
    message : str
        Human-readable error message describing the validation failure.
    errors : list[dict[str, object]] | None, optional
        Validation error dictionaries with field/issue details.
        Defaults to None.
    cause : Exception | None, optional
        Underlying exception. Defaults to None.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: list[dict[str, object]] | None = None,
        cause: Exception | None = None,
    ) -> None:
        context: dict[str, object] = {}
        if errors:
            context["errors"] = errors
        super().__init__(
            message,
            code=ErrorCode.CONFIGURATION_ERROR,
            log_level=logging.CRITICAL,
            cause=cause,
            context=context,
        )
        self.errors = list(errors or [])
