"""Network utilities shared by the dialer, handshake and relay."""

import socket
import ssl
from typing import Tuple

from ..utils.logging import get_logger

logger = get_logger("core.network")


def server_name_for(target_host: str) -> str:
    """Return the host portion of ``host:port`` (text before the first colon)."""
    return target_host.split(":", 1)[0]


def split_host_port(address: str, default_port: int) -> Tuple[str, int]:
    """
    Split ``host:port`` into its parts.

    Bracketed IPv6 literals are accepted. A missing port falls back
    to ``default_port``.

    Raises:
        ValueError: If the port is not a number
    """
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    else:
        host, _, port = address.rpartition(":")
        if not host:
            host, port = port, ""
    return host, int(port) if port else default_port


def close_write(conn) -> bool:
    """
    Half-close the write side of ``conn`` if its type supports it.

    Objects exposing ``close_write()`` are delegated to. Plain sockets
    are shut down for writing. TLS sockets are left alone since
    ``SSLSocket.shutdown`` drops the TLS layer for the read side too.

    Returns:
        True if the write side was closed
    """
    closer = getattr(conn, "close_write", None)
    if callable(closer):
        return closer()

    if isinstance(conn, ssl.SSLSocket):
        logger.debug("Half-close skipped on TLS socket, it stays open until fully closed")
        return False

    if not isinstance(conn, socket.socket):
        return False

    try:
        conn.shutdown(socket.SHUT_WR)
        return True
    except OSError as e:
        logger.debug(f"shutdown(SHUT_WR) failed: {e}")
        return False
