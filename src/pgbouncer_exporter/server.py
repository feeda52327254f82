"""Listener setup and uvicorn launch.

The socket is bound before uvicorn starts so a busy or forbidden address is
reported as :class:`BindError` instead of a uvicorn log line followed by
``SystemExit``.
"""

from __future__ import annotations

import logging
import socket
from typing import TYPE_CHECKING

import uvicorn

from exporter_common.errors import BindError
from exporter_common.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI

__all__ = ["bind_socket", "serve"]

logger = get_logger(__name__)


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket on ``host``:``port``.

    Parameters
    ----------
    host : str
        IPv4 or IPv6 address (or hostname) to bind.
    port : int
        Port to bind; 0 picks a free port.

    Returns
    -------
    socket.socket
        Bound socket, not yet listening.

    Raises
    ------
    BindError
        If the address cannot be bound.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        msg = f"cannot listen on {host}:{port}: {exc.strerror or exc}"
        raise BindError(msg, cause=exc, context={"host": host, "port": port}) from exc
    sock.set_inheritable(True)
    return sock


def serve(app: FastAPI, *, host: str, port: int, log_level: int = logging.INFO) -> None:
    """Bind ``host``:``port`` and serve ``app`` until interrupted.

    Raises
    ------
    BindError
        If the address cannot be bound.
    """
    sock = bind_socket(host, port)
    config = uvicorn.Config(
        app,
        log_config=None,
        log_level=log_level,
        access_log=False,
        server_header=False,
    )
    logger.info(
        "Listening on",
        extra={"operation": "serve", "address": f"{host}:{sock.getsockname()[1]}"},
    )
    try:
        uvicorn.Server(config).run(sockets=[sock])
    finally:
        sock.close()
