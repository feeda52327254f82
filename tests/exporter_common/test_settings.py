"""Tests for typed settings and fail-fast validation."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from exporter_common.errors import ErrorCode, SettingsError
from exporter_common.settings import (
    DEFAULT_CONNECTION_STRING,
    Credentials,
    load_credentials,
    load_settings,
)

_ENV_VARS = (
    "PGBOUNCER_EXPORTER_CONNECTION_STRING",
    "PGBOUNCER_EXPORTER_CONNECT_TIMEOUT",
    "PGBOUNCER_EXPORTER_LISTEN_PORT",
    "PGBOUNCER_EXPORTER_LISTEN_HOST",
    "PGBOUNCER_EXPORTER_METRICS_PATH",
    "PGBOUNCER_EXPORTER_PID_FILE",
    "PGBOUNCER_EXPORTER_LOG_LEVEL",
    "BASIC_AUTH_USER",
    "BASIC_AUTH_PASS",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self) -> None:
        settings = load_settings()

        assert settings.connection_string == DEFAULT_CONNECTION_STRING
        assert settings.listen_host == "0.0.0.0"
        assert settings.listen_port == 9584
        assert settings.metrics_path == "/metrics"
        assert settings.pid_file is None
        assert settings.connect_timeout == 5.0
        assert settings.level == logging.INFO

    def test_settings_are_frozen(self) -> None:
        settings = load_settings()

        with pytest.raises(ValidationError):
            settings.listen_port = 1  # type: ignore[misc]


class TestSources:
    def test_environment_is_read(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PGBOUNCER_EXPORTER_LISTEN_PORT", "9100")
        monkeypatch.setenv("PGBOUNCER_EXPORTER_PID_FILE", "/run/pgbouncer/pgbouncer.pid")

        settings = load_settings()

        assert settings.listen_port == 9100
        assert settings.pid_file == Path("/run/pgbouncer/pgbouncer.pid")

    def test_overrides_take_precedence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PGBOUNCER_EXPORTER_LISTEN_PORT", "9100")

        settings = load_settings(listen_port=9200, metrics_path="/custom")

        assert settings.listen_port == 9200
        assert settings.metrics_path == "/custom"

    def test_none_overrides_are_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PGBOUNCER_EXPORTER_LOG_LEVEL", "debug")

        settings = load_settings(log_level=None, listen_port=None)

        assert settings.log_level == "debug"
        assert settings.level == logging.DEBUG
        assert settings.listen_port == 9584

    def test_blank_pid_file_is_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PGBOUNCER_EXPORTER_PID_FILE", "  ")

        assert load_settings().pid_file is None

    def test_empty_pid_file_override_is_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PGBOUNCER_EXPORTER_PID_FILE", "/run/pgbouncer/pgbouncer.pid")

        assert load_settings(pid_file="").pid_file is None


class TestValidation:
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"metrics_path": "metrics"}, "metrics_path"),
            ({"metrics_path": "/"}, "metrics_path"),
            ({"listen_port": 0}, "listen_port"),
            ({"listen_port": 70000}, "listen_port"),
            ({"log_level": "verbose"}, "log_level"),
            ({"connect_timeout": 0}, "connect_timeout"),
        ],
    )
    def test_invalid_values_raise_settings_error(
        self, overrides: dict[str, object], field: str
    ) -> None:
        with pytest.raises(SettingsError) as exc_info:
            load_settings(**overrides)

        error = exc_info.value
        assert error.code is ErrorCode.CONFIGURATION_ERROR
        assert [entry["field"] for entry in error.errors] == [field]
        assert field in error.message

    def test_unknown_fields_are_rejected(self) -> None:
        with pytest.raises(SettingsError):
            load_settings(listen_address=":9584")

    def test_log_level_is_normalized(self) -> None:
        assert load_settings(log_level="WARN").log_level == "warn"


class TestCredentials:
    def test_credentials_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BASIC_AUTH_USER", "admin")
        monkeypatch.setenv("BASIC_AUTH_PASS", "secret")

        assert load_credentials() == Credentials("admin", "secret")

    def test_unset_credentials_are_empty(self) -> None:
        assert load_credentials() == Credentials("", "")

    def test_repr_masks_password(self) -> None:
        text = repr(Credentials("admin", "secret"))

        assert "admin" in text
        assert "secret" not in text
