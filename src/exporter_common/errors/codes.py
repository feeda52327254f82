"""Stable error codes for exporter failures.

Codes are kebab-case strings that show up in log records and in the
``X-Error-Code`` response header. They stay stable across releases so log
queries and alerts keep matching.

Examples
--------
>>> from exporter_common.errors.codes import ErrorCode
>>> code = ErrorCode.AUTHENTICATION_FAILED
>>> assert code == "authentication-failed"
"""

from __future__ import annotations

from enum import StrEnum

__all__ = ["ErrorCode"]


class ErrorCode(StrEnum):
    """Stable error codes for exporter exceptions.

    Error codes are organized by category:
    - Access: request authentication
    - Collection: producer registration and collect passes
    - Runtime: configuration and listener setup
    """

    # Access
    AUTHENTICATION_FAILED = "authentication-failed"

    # Collection
    COLLECTION_FAILED = "collection-failed"
    DUPLICATE_PRODUCER = "duplicate-producer"
    REGISTRY_CLOSED = "registry-closed"

    # Runtime
    CONFIGURATION_ERROR = "configuration-error"
    BIND_FAILED = "bind-failed"
    RUNTIME_ERROR = "runtime-error"

    def __str__(self) -> str:
        """Return the code value as a string.

        Returns
        -------
        str
            The error code value (e.g., "bind-failed").
        """
        return self.value
