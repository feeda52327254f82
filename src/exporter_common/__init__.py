"""Shared logging, error and settings helpers for the PgBouncer exporter."""

from __future__ import annotations

from exporter_common import errors, logging, settings

__all__ = [
    "errors",
    "logging",
    "settings",
]
