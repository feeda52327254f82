"""Basic-auth gate placed in front of every exporter route.

The gate is a FastAPI dependency: a route that depends on it only runs once
the request's basic credentials match the configured pair exactly. Any
rejection raises :class:`AuthenticationError`, which the exporter's error
handler turns into a bare ``401 Unauthorized.`` so callers cannot tell a
missing header from a wrong password.
"""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING

from fastapi import Request

from exporter_common.errors import AuthenticationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from exporter_common.settings import Credentials

__all__ = [
    "CredentialGate",
    "parse_basic_authorization",
]


def parse_basic_authorization(header: str | None) -> tuple[str, str] | None:
    """Decode a ``Basic`` authorization header into ``(username, password)``.

    Parameters
    ----------
    header : str | None
        Raw ``Authorization`` header value.

    Returns
    -------
    tuple[str, str] | None
        The decoded pair, or None when the header is absent, uses another
        scheme, or is not valid ``base64(username:password)``.
    """
    if not header:
        return None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, separator, password = decoded.partition(":")
    if not separator:
        return None
    return username, password


class CredentialGate:
    """Dependency rejecting requests without the expected basic credentials.

    Parameters
    ----------
    credentials : Credentials
        Expected pair. When either part is empty no request can pass.

    Examples
    --------
    >>> from typing import Annotated
    >>> from fastapi import Depends, FastAPI
    >>> from exporter_common.settings import Credentials
    >>> gate = CredentialGate(Credentials("admin", "secret"))
    >>> app = FastAPI()
    >>> @app.get("/private")
    ... def private(_: Annotated[None, Depends(gate.dependency())]) -> dict[str, str]:
    ...     return {"ok": "yes"}
    """

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def check(self, authorization: str | None) -> None:
        """Validate a raw ``Authorization`` header value.

        Raises
        ------
        AuthenticationError
            If the header is missing, malformed, carries a blank username or
            password, or does not match the expected pair.
        """
        supplied = parse_basic_authorization(authorization)
        if supplied is None:
            raise AuthenticationError("missing or malformed basic credentials")
        username, password = supplied
        if not username.strip() or not password.strip():
            raise AuthenticationError("blank username or password")
        expected = self._credentials
        if username != expected.username or password != expected.password:
            raise AuthenticationError("credentials do not match")

    def dependency(self) -> Callable[[Request], None]:
        """Return a FastAPI dependency running :meth:`check` on each request."""

        def require_credentials(request: Request) -> None:
            self.check(request.headers.get("authorization"))

        return require_credentials
