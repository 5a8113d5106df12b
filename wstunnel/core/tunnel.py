"""Local listener that dispatches each accepted connection to its own session."""

import errno
import socket
from threading import Thread
from typing import Callable, Optional, Tuple

from .handshake import UpstreamStream, connect_upstream
from .relay import relay
from ..config.models import TunnelConfig
from ..utils.exceptions import ListenerError, PortInUseError, UpstreamError
from ..utils.logging import get_logger

logger = get_logger("core.tunnel")

Connector = Callable[[TunnelConfig], UpstreamStream]


class TunnelListener:
    """Accepts local connections and runs a tunnel session for each."""

    def __init__(self, config: TunnelConfig, connect: Connector = connect_upstream):
        self.config = config
        self._connect = connect
        self._sock: Optional[socket.socket] = None
        self._closing = False

    @property
    def address(self) -> Tuple[str, int]:
        """Address the listener is bound to."""
        if self._sock is None:
            raise ListenerError("Listener is not bound")
        return self._sock.getsockname()[:2]

    def bind(self) -> Tuple[str, int]:
        """
        Open the listening socket.

        Raises:
            PortInUseError: If the address is already in use
            ListenerError: If the socket cannot be opened
        """
        host = self.config.listen_addr
        port = self.config.port
        logger.info(f"Listening on {host or '*'}:{port}")

        try:
            self._sock = socket.create_server((host, port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise PortInUseError(port, host) from e
            raise ListenerError(f"Failed to listen on {host}:{port}: {e}") from e

        return self.address

    def serve_forever(self) -> None:
        """
        Accept connections until the listener is closed.

        Raises:
            ListenerError: If the listening socket becomes unusable
        """
        if self._sock is None:
            self.bind()

        while True:
            try:
                conn, address = self._sock.accept()
            except OSError as e:
                if self._closing:
                    logger.info("Listener closed")
                    return
                if self._sock.fileno() == -1:
                    raise ListenerError(f"Listening socket is no longer usable: {e}") from e
                logger.error(f"accept(): {e}")
                continue

            Thread(
                target=self.handle_connection,
                args=(conn, address),
                name=f"session {address[0]}:{address[1]}",
                daemon=True
            ).start()

    def handle_connection(self, conn: socket.socket, address: Tuple[str, int]) -> None:
        """Run one tunnel session: handshake chain, then relay."""
        peer = f"{address[0]}:{address[1]}"
        logger.info(f"Accepted connection from {peer}")

        try:
            upstream = self._connect(self.config)
        except UpstreamError as e:
            logger.error(f"Upstream for {peer} failed: {e}")
            conn.close()
            return
        except Exception:
            logger.exception(f"Unexpected error connecting upstream for {peer}")
            conn.close()
            return

        errors = relay(conn, upstream)
        if errors:
            logger.info(f"Session {peer} closed with {len(errors)} error(s)")
        else:
            logger.info(f"Session {peer} closed")

    def close(self) -> None:
        """Stop accepting connections. Running sessions are not interrupted."""
        self._closing = True
        if self._sock is None:
            return

        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"shutdown() on listening socket: {e}")
        self._sock.close()
