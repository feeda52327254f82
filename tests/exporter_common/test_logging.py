"""Tests for structured logging with correlation IDs."""

from __future__ import annotations

import json
import logging
import sys
from io import StringIO
from typing import TYPE_CHECKING

import pytest

from exporter_common.logging import (
    CorrelationContext,
    JsonFormatter,
    get_correlation_id,
    get_logger,
    parse_level,
    set_correlation_id,
    with_fields,
)

if TYPE_CHECKING:
    from _pytest.logging import LogCaptureFixture


def parse_log_record(raw: str) -> dict[str, object]:
    parsed: object = json.loads(raw)
    if not isinstance(parsed, dict):
        message = "Expected dict payload from JsonFormatter output"
        raise TypeError(message)
    return parsed


@pytest.fixture(autouse=True)
def _clear_correlation_id() -> None:
    set_correlation_id(None)


def _json_logger(name: str) -> tuple[logging.Logger, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


def test_format_with_structured_fields() -> None:
    """JSON formatter includes structured fields and extras."""
    formatter = JsonFormatter()
    record = logging.getLogger("test").makeRecord(
        "test",
        logging.INFO,
        __file__,
        42,
        "Scrape finished",
        (),
        None,
        extra={"operation": "scrape", "status": "success", "duration_ms": 1.5, "producer": "pgbouncer"},
    )

    data = parse_log_record(formatter.format(record))

    assert data["level"] == "INFO"
    assert data["name"] == "test"
    assert data["message"] == "Scrape finished"
    assert data["operation"] == "scrape"
    assert data["status"] == "success"
    assert data["duration_ms"] == 1.5
    assert data["producer"] == "pgbouncer"
    assert str(data["ts"]).endswith("Z")


def test_timestamp_is_utc() -> None:
    record = logging.getLogger("test").makeRecord(
        "test", logging.INFO, __file__, 1, "tick", (), None
    )
    record.created = 0.0
    record.msecs = 0.0

    data = parse_log_record(JsonFormatter().format(record))

    assert data["ts"] == "1970-01-01T00:00:00.000Z"


def test_format_uses_context_correlation_id() -> None:
    formatter = JsonFormatter()
    record = logging.getLogger("test").makeRecord(
        "test", logging.INFO, __file__, 1, "hello", (), None
    )

    with CorrelationContext("req-42"):
        data = parse_log_record(formatter.format(record))

    assert data["correlation_id"] == "req-42"


def test_format_includes_exception() -> None:
    formatter = JsonFormatter()
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.getLogger("test").makeRecord(
            "test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
        )

    data = parse_log_record(formatter.format(record))

    assert "RuntimeError: boom" in str(data["exc_info"])


def test_adapter_defaults_operation_and_infers_status() -> None:
    base, stream = _json_logger("tests.adapter.status")
    adapter = get_logger("tests.adapter.status")
    assert adapter.logger is base

    adapter.info("ok")
    adapter.warning("careful")
    adapter.error("broken")

    records = [parse_log_record(line) for line in stream.getvalue().splitlines()]
    assert [r["status"] for r in records] == ["success", "warning", "error"]
    assert all(r["operation"] == "unknown" for r in records)


def test_explicit_extra_wins_over_bound_fields() -> None:
    _, stream = _json_logger("tests.adapter.extra")
    logger = get_logger("tests.adapter.extra")

    with with_fields(logger, operation="collect", producer="pgbouncer") as log:
        log.info("collected", extra={"producer": "process"})

    data = parse_log_record(stream.getvalue().strip())
    assert data["operation"] == "collect"
    assert data["producer"] == "process"


def test_with_fields_sets_and_restores_correlation_id() -> None:
    set_correlation_id("outer")
    logger = get_logger(__name__)

    with with_fields(logger, correlation_id="inner"):
        assert get_correlation_id() == "inner"

    assert get_correlation_id() == "outer"


def test_correlation_context_restores_previous_value() -> None:
    with CorrelationContext("first"):
        with CorrelationContext("second"):
            assert get_correlation_id() == "second"
        assert get_correlation_id() == "first"
    assert get_correlation_id() is None


def test_adapter_propagates_to_caplog(caplog: LogCaptureFixture) -> None:
    logger = get_logger("tests.adapter.caplog")

    with caplog.at_level(logging.INFO, logger="tests.adapter.caplog"):
        logger.info("Starting", extra={"operation": "startup"})

    record = caplog.records[-1]
    assert record.getMessage() == "Starting"
    assert getattr(record, "operation", None) == "startup"
    assert getattr(record, "status", None) == "success"


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("warning", logging.WARNING),
        (" error ", logging.ERROR),
    ],
)
def test_parse_level(name: str, expected: int) -> None:
    assert parse_level(name) == expected


def test_parse_level_rejects_unknown_names() -> None:
    with pytest.raises(ValueError, match="unrecognized log level 'verbose'"):
        parse_level("verbose")
