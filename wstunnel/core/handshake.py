"""TLS and WebSocket handshake chain producing the upstream stream."""

import socket

from websockets.client import ClientProtocol
from websockets.protocol import State
from websockets.typing import Origin
from websockets.uri import parse_uri

from .network import close_write
from .proxy import dial
from ..config.models import TunnelConfig, WSConfig
from ..utils.exceptions import HandshakeError
from ..utils.logging import get_logger

logger = get_logger("core.handshake")

RECV_SIZE = 4096
MAX_RESPONSE_HEAD = 64 * 1024
HEAD_TERMINATOR = b"\r\n\r\n"


class UpstreamStream:
    """
    Duplex byte stream over an upgraded WebSocket connection.

    Bytes the server sent right after the upgrade response are
    returned by the first reads.
    """

    def __init__(self, sock: socket.socket, pending: bytes = b""):
        self.sock = sock
        self._pending = pending

    def recv(self, bufsize: int) -> bytes:
        if self._pending:
            data, self._pending = self._pending[:bufsize], self._pending[bufsize:]
            return data
        return self.sock.recv(bufsize)

    def sendall(self, data: bytes) -> None:
        self.sock.sendall(data)

    def close_write(self) -> bool:
        return close_write(self.sock)

    def close(self) -> None:
        self.sock.close()

    def __repr__(self) -> str:
        return f"UpstreamStream({self.sock!r})"


def connect_upstream(config: TunnelConfig) -> UpstreamStream:
    """
    Dial the target, wrap it in TLS if configured and upgrade to WebSocket.

    Raises:
        DialError: If the target or proxy cannot be reached
        HandshakeError: If the TLS or WebSocket handshake fails
    """
    ws = config.ws
    sock = dial(ws.location)

    try:
        if ws.tls is not None:
            sock = ws.tls.context.wrap_socket(
                sock,
                server_hostname=ws.tls.server_name,
                do_handshake_on_connect=False,
            )
        pending = websocket_upgrade(sock, ws)
    except HandshakeError:
        sock.close()
        raise
    except OSError as e:
        sock.close()
        raise HandshakeError(f"Handshake with {ws.location} failed: {e}") from e

    logger.debug(f"Upgraded connection to {ws.location}")
    return UpstreamStream(sock, pending)


def websocket_upgrade(sock: socket.socket, ws: WSConfig) -> bytes:
    """
    Perform the WebSocket opening handshake over ``sock``.

    Returns:
        Any bytes received after the response head

    Raises:
        HandshakeError: If the server rejects or garbles the upgrade
    """
    protocol = ClientProtocol(parse_uri(ws.location), origin=Origin(ws.origin))
    protocol.send_request(protocol.connect())
    for data in protocol.data_to_send():
        sock.sendall(data)

    buffered = b""
    while HEAD_TERMINATOR not in buffered:
        if len(buffered) > MAX_RESPONSE_HEAD:
            raise HandshakeError(f"Upgrade response from {ws.location} is too large")
        chunk = sock.recv(RECV_SIZE)
        if not chunk:
            raise HandshakeError(f"Connection to {ws.location} closed during WebSocket upgrade")
        buffered += chunk

    head, _, rest = buffered.partition(HEAD_TERMINATOR)
    protocol.receive_data(head + HEAD_TERMINATOR)
    protocol.events_received()

    if protocol.handshake_exc is not None:
        raise HandshakeError(
            f"WebSocket upgrade to {ws.location} failed: {protocol.handshake_exc}"
        ) from protocol.handshake_exc

    if protocol.state is not State.OPEN:
        raise HandshakeError(f"WebSocket upgrade to {ws.location} rejected: {_status_line(head)}")

    return rest


def _status_line(head: bytes) -> str:
    return head.split(b"\r\n", 1)[0].decode("latin-1")
