"""Shared pytest fixtures.

This module provides reusable fixtures for:
- Expected basic-auth credentials and the matching request header
- A fake PgBouncer admin console serving canned ``SHOW`` results
- Helpers to read samples out of collected metric families
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

import psycopg
import pytest

from exporter_common.settings import Credentials

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from prometheus_client.core import Metric

# base64("admin:secret")
AUTH_HEADER = "Basic YWRtaW46c2VjcmV0"

ADMIN_RESULTS: dict[str, list[dict[str, Any]]] = {
    "SHOW STATS": [
        {
            "database": "app",
            "total_server_assignment_count": 12,
            "total_xact_count": 40,
            "total_query_count": 120,
            "total_received": 2048,
            "total_sent": 4096,
            "total_xact_time": 3_000_000,
            "total_query_time": 2_500_000,
            "total_wait_time": 250_000,
            "avg_xact_count": 1,
        },
        {
            "database": "pgbouncer",
            "total_server_assignment_count": 0,
            "total_xact_count": 1,
            "total_query_count": 1,
            "total_received": 0,
            "total_sent": 0,
            "total_xact_time": 0,
            "total_query_time": 0,
            "total_wait_time": 0,
            "avg_xact_count": 0,
        },
    ],
    "SHOW POOLS": [
        {
            "database": "app",
            "user": "app_rw",
            "cl_active": 3,
            "cl_waiting": 1,
            "cl_active_cancel_req": 0,
            "cl_waiting_cancel_req": 0,
            "sv_active": 2,
            "sv_active_cancel": 0,
            "sv_being_canceled": 0,
            "sv_idle": 5,
            "sv_used": 0,
            "sv_tested": 0,
            "sv_login": 0,
            "maxwait": 1,
            "maxwait_us": 500_000,
            "pool_mode": "transaction",
        },
    ],
    "SHOW DATABASES": [
        {
            "name": "app",
            "host": "10.0.0.5",
            "port": 5432,
            "database": "app",
            "force_user": None,
            "pool_size": 20,
            "min_pool_size": 0,
            "reserve_pool": 5,
            "pool_mode": "transaction",
            "max_connections": 100,
            "current_connections": 7,
            "paused": 0,
            "disabled": 0,
        },
        {
            "name": "pgbouncer",
            "host": None,
            "port": 6432,
            "database": "pgbouncer",
            "force_user": "pgbouncer",
            "pool_size": 2,
            "min_pool_size": 0,
            "reserve_pool": 0,
            "pool_mode": "statement",
            "max_connections": 0,
            "current_connections": 0,
            "paused": 0,
            "disabled": 0,
        },
    ],
    "SHOW LISTS": [
        {"list": "databases", "items": 2},
        {"list": "users", "items": 3},
        {"list": "pools", "items": 2},
        {"list": "free_clients", "items": 48},
        {"list": "used_clients", "items": 4},
        {"list": "login_clients", "items": 0},
        {"list": "free_servers", "items": 0},
        {"list": "used_servers", "items": 7},
        {"list": "dns_names", "items": 1},
        {"list": "dns_zones", "items": 0},
        {"list": "dns_queries", "items": 0},
        {"list": "dns_pending", "items": 0},
    ],
    "SHOW CONFIG": [
        {"key": "max_client_conn", "value": "100", "default": "100", "changeable": "yes"},
        {"key": "max_user_connections", "value": "0", "default": "0", "changeable": "yes"},
        {"key": "pool_mode", "value": "transaction", "default": "session", "changeable": "yes"},
    ],
    "SHOW VERSION": [{"version": "PgBouncer 1.21.0"}],
}


class FakeCursor:
    """Cursor returning canned mapping rows."""

    def __init__(self, rows: Sequence[Mapping[str, Any]]) -> None:
        self._rows = list(rows)

    def fetchall(self) -> list[Mapping[str, Any]]:
        return list(self._rows)


class FakeAdminConnection:
    """In-memory stand-in for a psycopg connection to the admin console."""

    def __init__(
        self,
        results: Mapping[str, Sequence[Mapping[str, Any]]],
        *,
        fail_on: str | None = None,
    ) -> None:
        self.results = results
        self.fail_on = fail_on
        self.queries: list[str] = []
        self.closed = False

    def execute(self, query: str) -> FakeCursor:
        self.queries.append(query)
        if query == self.fail_on:
            msg = "server closed the connection unexpectedly"
            raise psycopg.OperationalError(msg)
        return FakeCursor(self.results.get(query, []))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def credentials() -> Credentials:
    """Expected basic-auth pair ``admin`` / ``secret``."""
    return Credentials("admin", "secret")


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Request headers carrying the ``admin`` / ``secret`` pair."""
    return {"Authorization": AUTH_HEADER}


@pytest.fixture
def admin_results() -> dict[str, list[dict[str, Any]]]:
    """Mutable copy of the canned admin-console results."""
    return copy.deepcopy(ADMIN_RESULTS)


@pytest.fixture
def admin_connection(admin_results: dict[str, list[dict[str, Any]]]) -> FakeAdminConnection:
    return FakeAdminConnection(admin_results)


@pytest.fixture
def connector(admin_connection: FakeAdminConnection) -> Callable[[], FakeAdminConnection]:
    """Connector handing out the shared fake connection."""
    return lambda: admin_connection


@pytest.fixture
def fake_connection_factory() -> Callable[..., FakeAdminConnection]:
    """Build fake connections with custom results or a failing command."""

    def factory(
        results: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
        *,
        fail_on: str | None = None,
    ) -> FakeAdminConnection:
        return FakeAdminConnection(
            copy.deepcopy(ADMIN_RESULTS) if results is None else results, fail_on=fail_on
        )

    return factory


@pytest.fixture
def sample_values() -> Callable[[Iterable[Metric]], dict[tuple[str, tuple[tuple[str, str], ...]], float]]:
    """Flatten families into ``{(sample name, sorted labels): value}``."""

    def flatten(
        families: Iterable[Metric],
    ) -> dict[tuple[str, tuple[tuple[str, str], ...]], float]:
        return {
            (sample.name, tuple(sorted(sample.labels.items()))): sample.value
            for family in families
            for sample in family.samples
        }

    return flatten
