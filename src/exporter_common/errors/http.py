"""FastAPI exception handlers for :class:`ExporterError`.

Examples
--------
>>> from fastapi import FastAPI
>>> from exporter_common.errors.http import register_error_handlers
>>> app = FastAPI()
>>> register_error_handlers(app)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.responses import PlainTextResponse

from exporter_common.errors.exceptions import AuthenticationError, ExporterError
from exporter_common.logging import get_logger, with_fields

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

__all__ = [
    "UNAUTHORIZED_BODY",
    "error_response",
    "register_error_handlers",
]

logger = get_logger(__name__)

# Clients match on this exact body: "Unauthorized." plus a newline.
UNAUTHORIZED_BODY = f"{AuthenticationError.public_message}\n"


def error_response(error: ExporterError, request: Request | None = None) -> PlainTextResponse:
    """Convert an :class:`ExporterError` into a plain-text response.

    Authentication failures get the fixed ``Unauthorized.`` body and a basic
    challenge; the internal reason is only logged. Other errors return their
    message with their own status.

    Parameters
    ----------
    error : ExporterError
        Exception raised while handling the request.
    request : Request | None, optional
        Request being handled, used for log context. Defaults to None.

    Returns
    -------
    PlainTextResponse
        Response carrying the error's HTTP status and ``X-Error-Code`` header.
    """
    path = request.url.path if request is not None else None
    with with_fields(logger, operation="http_error", path=path) as log_adapter:
        log_adapter.log(error.log_level, "Request failed: %s", error.message, extra=error.log_fields())

    headers = {"X-Error-Code": error.code.value}
    if isinstance(error, AuthenticationError):
        headers["WWW-Authenticate"] = 'Basic realm="pgbouncer_exporter"'
        return PlainTextResponse(UNAUTHORIZED_BODY, status_code=error.http_status, headers=headers)
    return PlainTextResponse(f"{error.message}\n", status_code=error.http_status, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Register the FastAPI exception handler for :class:`ExporterError`."""

    async def _handler(request: Request, exc: Exception) -> PlainTextResponse:
        if not isinstance(exc, ExporterError):  # pragma: no cover - registered for ExporterError only
            raise exc
        return error_response(exc, request)

    app.add_exception_handler(ExporterError, _handler)
