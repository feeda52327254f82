"""Exception hierarchy and HTTP error handling for the exporter.

Examples
--------
>>> from exporter_common.errors import ExporterError, ErrorCode
>>> try:
...     raise ExporterError("Operation failed", code=ErrorCode.RUNTIME_ERROR)
... except ExporterError as e:
...     assert e.http_status == 500
"""

from __future__ import annotations

from exporter_common.errors.codes import ErrorCode
from exporter_common.errors.exceptions import (
    AuthenticationError,
    BindError,
    CollectorError,
    DuplicateProducerError,
    ExporterError,
    RegistryClosedError,
    SettingsError,
)

__all__ = [
    "AuthenticationError",
    "BindError",
    "CollectorError",
    "DuplicateProducerError",
    "ErrorCode",
    "ExporterError",
    "RegistryClosedError",
    "SettingsError",
]
