"""FastAPI application exposing the index page and the metrics endpoint.

Every path sits behind the :class:`CredentialGate`. The metrics route renders
the sealed registry on every request; a producer failure never turns the
scrape into an error response, it only shows up in the meta-metrics.

Examples
--------
>>> from exporter_common.settings import Credentials, load_settings
>>> from pgbouncer_exporter.app import build_registry, create_app
>>> settings = load_settings()
>>> app = create_app(build_registry(settings), credentials=Credentials("admin", "secret"))
"""

from __future__ import annotations

import html
import time
import uuid
from typing import TYPE_CHECKING, Final

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import HTMLResponse, PlainTextResponse, Response

from exporter_common.errors.http import register_error_handlers
from exporter_common.logging import CorrelationContext, get_logger
from pgbouncer_exporter.auth import CredentialGate
from pgbouncer_exporter.build_info import BuildInfoCollector
from pgbouncer_exporter.pgbouncer import PgBouncerCollector
from pgbouncer_exporter.process import ProcessResourceCollector, pid_file_resolver
from pgbouncer_exporter.registry import DEFAULT_NAMESPACE, MetricRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from exporter_common.settings import Credentials, ExporterSettings
    from pgbouncer_exporter.pgbouncer import Connector

__all__ = [
    "CorrelationIDMiddleware",
    "build_registry",
    "create_app",
    "index_page",
]

logger = get_logger(__name__)

_ALL_METHODS: Final = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

_INDEX_TEMPLATE = """<html>
<head><title>PgBouncer Exporter</title></head>
<body>
<h1>PgBouncer Exporter</h1>
<p><a href='{path}'>Metrics</a></p>
</body>
</html>
"""


def index_page(metrics_path: str) -> str:
    """Return the landing page linking to ``metrics_path``."""
    return _INDEX_TEMPLATE.format(path=html.escape(metrics_path, quote=True))


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Take the correlation ID from ``X-Correlation-ID`` or generate one.

    The ID is bound for the duration of the request and echoed back in the
    response header.
    """

    HEADER_NAME: Final[str] = "X-Correlation-ID"

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        with CorrelationContext(correlation_id):
            response = await call_next(request)
        response.headers[self.HEADER_NAME] = correlation_id
        return response


def build_registry(
    settings: ExporterSettings,
    *,
    connector: Connector | None = None,
) -> MetricRegistry:
    """Register the exporter's producers for ``settings``.

    Parameters
    ----------
    settings : ExporterSettings
        Validated runtime settings.
    connector : Connector | None, optional
        Admin-console connection factory passed to :class:`PgBouncerCollector`.
        Defaults to a psycopg connector for ``settings.connection_string``.

    Returns
    -------
    MetricRegistry
        Unsealed registry holding the PgBouncer, build info and (when a pid
        file is configured) process producers.

    Raises
    ------
    DuplicateProducerError
        If two producers declare the same metric name.
    """
    registry = MetricRegistry(DEFAULT_NAMESPACE)
    pgbouncer = PgBouncerCollector(
        settings.connection_string,
        connect_timeout=settings.connect_timeout,
        connector=connector,
    )
    registry.register(pgbouncer)
    registry.register(BuildInfoCollector(DEFAULT_NAMESPACE))
    if settings.pid_file is not None:
        registry.register(
            ProcessResourceCollector(pid_file_resolver(settings.pid_file), namespace=pgbouncer.namespace)
        )
    return registry


def create_app(
    registry: MetricRegistry,
    *,
    credentials: Credentials,
    metrics_path: str = "/metrics",
) -> FastAPI:
    """Create the exporter application and seal ``registry``.

    Parameters
    ----------
    registry : MetricRegistry
        Producers to render on each scrape. Sealed by this call.
    credentials : Credentials
        Expected basic-auth pair for every route.
    metrics_path : str, optional
        Path of the metrics endpoint. Defaults to ``/metrics``.

    Returns
    -------
    FastAPI
        Configured application.
    """
    registry.seal()
    gate = CredentialGate(credentials)
    auth_dependencies = [Depends(gate.dependency())]
    index_body = index_page(metrics_path)

    app = FastAPI(
        title="PgBouncer Exporter",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    register_error_handlers(app)
    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(CorrelationIDMiddleware)

    @app.get(
        "/", response_class=HTMLResponse, dependencies=auth_dependencies, include_in_schema=False
    )
    def index() -> HTMLResponse:
        return HTMLResponse(index_body)

    @app.get(metrics_path, dependencies=auth_dependencies, include_in_schema=False)
    def metrics(request: Request) -> Response:
        start = time.perf_counter()
        exposition = registry.render(request.headers.get("accept"))
        duration_ms = round((time.perf_counter() - start) * 1000, 3)
        if exposition.failed:
            logger.warning(
                "Scrape completed with failed producers",
                extra={
                    "operation": "scrape",
                    "duration_ms": duration_ms,
                    "failed_producers": list(exposition.failed),
                },
            )
        else:
            logger.debug(
                "Scrape completed", extra={"operation": "scrape", "duration_ms": duration_ms}
            )
        return Response(content=exposition.body, media_type=exposition.content_type)

    # Registered last so unknown paths and wrong methods are gated too.
    @app.api_route(
        "/{path:path}",
        methods=list(_ALL_METHODS),
        dependencies=auth_dependencies,
        include_in_schema=False,
    )
    def not_found() -> PlainTextResponse:
        return PlainTextResponse("404 page not found\n", status_code=404)

    return app
