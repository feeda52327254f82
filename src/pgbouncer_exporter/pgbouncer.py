"""PgBouncer statistics producer.

Each scrape opens one connection to the PgBouncer admin console, runs the
``SHOW`` commands listed in :data:`ROW_QUERIES` and :data:`KEY_VALUE_QUERIES`
and turns the result rows into metric families. The same tables drive
:meth:`PgBouncerCollector.describe`, so the declared and collected metrics
cannot drift apart.

The admin console only speaks the simple query protocol and rejects
transactions, so the connection is opened in autocommit mode and queries are
sent without parameters.
"""

from __future__ import annotations

import math
from contextlib import closing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

import psycopg
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from psycopg.rows import dict_row

from exporter_common.errors import CollectorError
from exporter_common.logging import get_logger
from pgbouncer_exporter.registry import MetricDescriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence

__all__ = [
    "KEY_VALUE_QUERIES",
    "NAMESPACE",
    "ROW_QUERIES",
    "AdminConnection",
    "ColumnMetric",
    "KeyValueQuery",
    "PgBouncerCollector",
    "RowQuery",
    "psycopg_connector",
]

logger = get_logger(__name__)

NAMESPACE = "pgbouncer"

_MICROSECONDS = 1e-6

Row: TypeAlias = "Mapping[str, Any]"


class AdminCursor(Protocol):
    """Cursor surface used by the collector (rows are mappings)."""

    def fetchall(self) -> Sequence[Row]:
        """Return every remaining row."""
        ...


class AdminConnection(Protocol):
    """Connection surface used by the collector."""

    def execute(self, query: str) -> AdminCursor:
        """Run ``query`` and return its cursor."""
        ...

    def close(self) -> None:
        """Close the connection."""
        ...


Connector: TypeAlias = "Callable[[], AdminConnection]"


@dataclass(frozen=True, slots=True)
class ColumnMetric:
    """Mapping of one result column (or config key) to a metric.

    ``value = row[column] * scale``, plus ``row[micro_column]`` in
    microseconds when ``micro_column`` is set and present.
    """

    column: str
    name: str
    type: str
    documentation: str
    scale: float = 1.0
    micro_column: str | None = None

    def descriptor(self, namespace: str, labelnames: Sequence[str] = ()) -> MetricDescriptor:
        """Return the descriptor for this metric under ``namespace``."""
        full_name = f"{namespace}_{self.name}"
        if self.type == "counter":
            return MetricDescriptor.counter(full_name, self.documentation, labelnames)
        return MetricDescriptor.gauge(full_name, self.documentation, labelnames)

    def value(self, row: Row) -> float | None:
        """Return the metric value from ``row``, or None when unavailable."""
        value = _as_float(row.get(self.column))
        if value is None:
            return None
        value *= self.scale
        if self.micro_column is not None:
            extra = _as_float(row.get(self.micro_column))
            if extra is not None:
                value += extra * _MICROSECONDS
        return value


@dataclass(frozen=True, slots=True)
class RowQuery:
    """Admin command returning one labelled sample per row and metric."""

    command: str
    labels: tuple[tuple[str, str], ...]
    metrics: tuple[ColumnMetric, ...]

    @property
    def labelnames(self) -> tuple[str, ...]:
        return tuple(label for label, _ in self.labels)


@dataclass(frozen=True, slots=True)
class KeyValueQuery:
    """Admin command returning ``key``/``value`` rows; each known key is one metric."""

    command: str
    key_column: str
    value_column: str
    metrics: tuple[ColumnMetric, ...]


ROW_QUERIES: tuple[RowQuery, ...] = (
    RowQuery(
        command="SHOW STATS",
        labels=(("database", "database"),),
        metrics=(
            ColumnMetric(
                "total_query_count",
                "stats_queries_pooled_total",
                "counter",
                "Total number of SQL queries pooled",
            ),
            ColumnMetric(
                "total_query_time",
                "stats_queries_duration_seconds_total",
                "counter",
                "Total number of seconds spent by pgbouncer when actively connected to "
                "PostgreSQL, executing queries",
                scale=_MICROSECONDS,
            ),
            ColumnMetric(
                "total_received",
                "stats_received_bytes_total",
                "counter",
                "Total volume in bytes of network traffic received by pgbouncer, shown as bytes",
            ),
            ColumnMetric(
                "total_sent",
                "stats_sent_bytes_total",
                "counter",
                "Total volume in bytes of network traffic sent by pgbouncer, shown as bytes",
            ),
            ColumnMetric(
                "total_xact_count",
                "stats_sql_transactions_pooled_total",
                "counter",
                "Total number of SQL transactions pooled",
            ),
            ColumnMetric(
                "total_xact_time",
                "stats_server_in_transaction_seconds_total",
                "counter",
                "Total number of seconds spent by pgbouncer when connected to PostgreSQL "
                "in a transaction, either idle in transaction or executing queries",
                scale=_MICROSECONDS,
            ),
            ColumnMetric(
                "total_wait_time",
                "stats_client_wait_seconds_total",
                "counter",
                "Time spent by clients waiting for a server, in seconds",
                scale=_MICROSECONDS,
            ),
            ColumnMetric(
                "total_server_assignment_count",
                "stats_server_assignments_total",
                "counter",
                "Total number of times a server was assigned to a client",
            ),
        ),
    ),
    RowQuery(
        command="SHOW POOLS",
        labels=(("database", "database"), ("user", "user")),
        metrics=(
            ColumnMetric(
                "cl_active",
                "pools_client_active_connections",
                "gauge",
                "Client connections linked to server connection and able to process queries",
            ),
            ColumnMetric(
                "cl_waiting",
                "pools_client_waiting_connections",
                "gauge",
                "Client connections waiting on a server connection",
            ),
            ColumnMetric(
                "cl_active_cancel_req",
                "pools_client_active_cancel_connections",
                "gauge",
                "Client connections that have forwarded query cancellations to the server "
                "and are waiting for the server response",
            ),
            ColumnMetric(
                "cl_waiting_cancel_req",
                "pools_client_waiting_cancel_connections",
                "gauge",
                "Client connections that have not forwarded query cancellations to the "
                "server yet",
            ),
            ColumnMetric(
                "sv_active",
                "pools_server_active_connections",
                "gauge",
                "Server connections that are linked to a client",
            ),
            ColumnMetric(
                "sv_active_cancel",
                "pools_server_active_cancel_connections",
                "gauge",
                "Server connections that are currently forwarding a cancel request",
            ),
            ColumnMetric(
                "sv_being_canceled",
                "pools_server_being_canceled_connections",
                "gauge",
                "Servers that normally could become idle but are waiting to do so until all "
                "in-flight cancel requests have completed",
            ),
            ColumnMetric(
                "sv_idle",
                "pools_server_idle_connections",
                "gauge",
                "Server connections that are unused and immediately usable for client queries",
            ),
            ColumnMetric(
                "sv_used",
                "pools_server_used_connections",
                "gauge",
                "Server connections that have been idle for more than server_check_delay",
            ),
            ColumnMetric(
                "sv_tested",
                "pools_server_testing_connections",
                "gauge",
                "Server connections that are currently running server_reset_query or "
                "server_check_query",
            ),
            ColumnMetric(
                "sv_login",
                "pools_server_login_connections",
                "gauge",
                "Server connections currently in the process of logging in",
            ),
            ColumnMetric(
                "maxwait",
                "pools_client_maxwait_seconds",
                "gauge",
                "Age of oldest unserved client connection, shown as seconds",
                micro_column="maxwait_us",
            ),
        ),
    ),
    RowQuery(
        command="SHOW DATABASES",
        labels=(
            ("name", "name"),
            ("host", "host"),
            ("port", "port"),
            ("database", "database"),
            ("force_user", "force_user"),
            ("pool_mode", "pool_mode"),
        ),
        metrics=(
            ColumnMetric(
                "pool_size",
                "databases_pool_size",
                "gauge",
                "Maximum number of server connections",
            ),
            ColumnMetric(
                "min_pool_size",
                "databases_min_pool_size",
                "gauge",
                "Minimum number of server connections",
            ),
            ColumnMetric(
                "reserve_pool",
                "databases_reserve_pool",
                "gauge",
                "Maximum number of additional connections for this database",
            ),
            ColumnMetric(
                "max_connections",
                "databases_max_connections",
                "gauge",
                "Maximum number of allowed connections for this database",
            ),
            ColumnMetric(
                "current_connections",
                "databases_current_connections",
                "gauge",
                "Current number of connections for this database",
            ),
            ColumnMetric(
                "paused",
                "databases_paused",
                "gauge",
                "1 if this database is currently paused, else 0",
            ),
            ColumnMetric(
                "disabled",
                "databases_disabled",
                "gauge",
                "1 if this database is currently disabled, else 0",
            ),
        ),
    ),
)

KEY_VALUE_QUERIES: tuple[KeyValueQuery, ...] = (
    KeyValueQuery(
        command="SHOW LISTS",
        key_column="list",
        value_column="items",
        metrics=(
            ColumnMetric("databases", "databases", "gauge", "Count of databases"),
            ColumnMetric("users", "users", "gauge", "Count of users"),
            ColumnMetric("pools", "pools", "gauge", "Count of pools"),
            ColumnMetric("free_clients", "free_clients", "gauge", "Count of free clients"),
            ColumnMetric("used_clients", "used_clients", "gauge", "Count of used clients"),
            ColumnMetric("login_clients", "login_clients", "gauge", "Count of clients in login state"),
            ColumnMetric("free_servers", "free_servers", "gauge", "Count of free servers"),
            ColumnMetric("used_servers", "used_servers", "gauge", "Count of used servers"),
            ColumnMetric("dns_names", "cached_dns_names", "gauge", "Count of DNS names in the cache"),
            ColumnMetric("dns_zones", "cached_dns_zones", "gauge", "Count of DNS zones in the cache"),
            ColumnMetric("dns_queries", "in_flight_dns_queries", "gauge", "Count of in-flight DNS queries"),
        ),
    ),
    KeyValueQuery(
        command="SHOW CONFIG",
        key_column="key",
        value_column="value",
        metrics=(
            ColumnMetric(
                "max_client_conn",
                "config_max_client_connections",
                "gauge",
                "Config maximum number of client connections",
            ),
            ColumnMetric(
                "max_user_connections",
                "config_max_user_connections",
                "gauge",
                "Config maximum number of server connections per user",
            ),
        ),
    ),
)


def _as_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)  # type: ignore[arg-type]  # int, Decimal or numeric str
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def _label_value(value: object) -> str:
    return "" if value is None else str(value)


def psycopg_connector(connection_string: str, *, connect_timeout: float = 5.0) -> Connector:
    """Return a connector opening autocommit psycopg connections with mapping rows."""
    timeout = max(1, math.ceil(connect_timeout))

    def connect() -> AdminConnection:
        return psycopg.connect(
            connection_string,
            autocommit=True,
            connect_timeout=timeout,
            row_factory=dict_row,
        )

    return connect


class PgBouncerCollector:
    """Producer for PgBouncer admin-console statistics.

    Parameters
    ----------
    connection_string : str
        libpq connection string or URI for the ``pgbouncer`` admin database.
    namespace : str, optional
        Metric-name prefix. Defaults to ``pgbouncer``.
    connect_timeout : float, optional
        Seconds to wait for the connection. Defaults to 5.
    connector : Connector | None, optional
        Factory returning an admin connection. Defaults to psycopg.
    """

    name = "pgbouncer"

    def __init__(
        self,
        connection_string: str,
        *,
        namespace: str = NAMESPACE,
        connect_timeout: float = 5.0,
        connector: Connector | None = None,
    ) -> None:
        self.namespace = namespace
        self._connect = connector or psycopg_connector(
            connection_string, connect_timeout=connect_timeout
        )

    def describe(self) -> Iterator[MetricDescriptor]:
        for query in ROW_QUERIES:
            for metric in query.metrics:
                yield metric.descriptor(self.namespace, query.labelnames)
        for kv_query in KEY_VALUE_QUERIES:
            for metric in kv_query.metrics:
                yield metric.descriptor(self.namespace)
        yield self._version_descriptor()

    def _version_descriptor(self) -> MetricDescriptor:
        return MetricDescriptor.gauge(
            f"{self.namespace}_version_info", "The pgbouncer version info", ("version",)
        )

    def collect(self) -> Iterator[Metric]:
        """Query the admin console and yield the resulting families.

        Raises
        ------
        CollectorError
            If the connection or any admin command fails.
        """
        families: list[Metric] = []
        try:
            with closing(self._connect()) as conn:
                for query in ROW_QUERIES:
                    families.extend(self._row_families(query, self._fetch(conn, query.command)))
                for kv_query in KEY_VALUE_QUERIES:
                    rows = self._fetch(conn, kv_query.command)
                    families.extend(self._key_value_families(kv_query, rows))
                families.extend(self._version_families(self._fetch(conn, "SHOW VERSION")))
        except psycopg.Error as exc:
            msg = f"PgBouncer query failed: {exc}"
            raise CollectorError(msg, cause=exc) from exc
        yield from families

    @staticmethod
    def _fetch(conn: AdminConnection, command: str) -> Sequence[Row]:
        rows = conn.execute(command).fetchall()
        logger.debug(
            "Admin command executed",
            extra={"operation": "collect", "command": command, "rows": len(rows)},
        )
        return rows

    def _new_family(self, descriptor: MetricDescriptor) -> CounterMetricFamily | GaugeMetricFamily:
        if descriptor.type == "counter":
            return CounterMetricFamily(
                descriptor.name, descriptor.documentation, labels=descriptor.labelnames
            )
        return GaugeMetricFamily(
            descriptor.name, descriptor.documentation, labels=descriptor.labelnames
        )

    def _row_families(self, query: RowQuery, rows: Sequence[Row]) -> list[Metric]:
        if not rows:
            return []
        present = [metric for metric in query.metrics if metric.column in rows[0]]
        families: list[Metric] = []
        for metric in present:
            family = self._new_family(metric.descriptor(self.namespace, query.labelnames))
            for row in rows:
                value = metric.value(row)
                if value is None:
                    continue
                labels = [_label_value(row.get(column)) for _, column in query.labels]
                family.add_metric(labels, value)
            families.append(family)
        return families

    def _key_value_families(self, query: KeyValueQuery, rows: Sequence[Row]) -> list[Metric]:
        values = {str(row.get(query.key_column)): row.get(query.value_column) for row in rows}
        families: list[Metric] = []
        for metric in query.metrics:
            if metric.column not in values:
                continue
            value = metric.value({metric.column: values[metric.column]})
            if value is None:
                continue
            family = self._new_family(metric.descriptor(self.namespace))
            family.add_metric([], value)
            families.append(family)
        return families

    def _version_families(self, rows: Sequence[Row]) -> list[Metric]:
        if not rows:
            return []
        version = _label_value(next(iter(rows[0].values()), None))
        descriptor = self._version_descriptor()
        family = GaugeMetricFamily(
            descriptor.name, descriptor.documentation, labels=descriptor.labelnames
        )
        family.add_metric([version], 1.0)
        return [family]
