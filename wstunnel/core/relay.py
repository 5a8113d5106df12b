"""Bidirectional byte relay between a local connection and the upstream stream."""

import queue
from threading import Thread
from typing import List, Optional, Tuple

from .network import close_write
from ..utils.exceptions import RelayError
from ..utils.logging import get_logger

logger = get_logger("core.relay")

BUFFER_SIZE = 32 * 1024

Completion = Tuple[object, Optional[RelayError]]


def relay(local, upstream, buffer_size: int = BUFFER_SIZE) -> List[RelayError]:
    """
    Pump bytes both ways until both directions have ended, then close both ends.

    When the first direction finishes, the write side of its destination
    is half-closed if the connection type supports it. The other direction
    keeps draining until it finishes too. Errors do not cut that short.

    Args:
        local: Accepted local connection
        upstream: Upstream stream
        buffer_size: Read size for each pump

    Returns:
        Errors reported by the two directions, in completion order
    """
    completions: "queue.Queue[Completion]" = queue.Queue(maxsize=2)
    errors: List[RelayError] = []

    try:
        for src, dst, direction in (
                (local, upstream, "local->upstream"),
                (upstream, local, "upstream->local"),
        ):
            Thread(
                target=_pump,
                args=(src, dst, direction, completions, buffer_size),
                name=f"pump {direction}",
                daemon=True
            ).start()

        for i in range(2):
            dst, error = completions.get()
            if error is not None:
                logger.warning(f"Relay error: {error}")
                errors.append(error)
            if i == 0 and not close_write(dst):
                logger.debug(f"{dst!r} does not support half-close, waiting for the other direction")

        return errors

    finally:
        _close(local)
        _close(upstream)


def _pump(src, dst, direction: str, completions: "queue.Queue[Completion]", buffer_size: int) -> None:
    """Copy from src to dst until EOF or error, then report on the completion queue."""
    error = None
    copied = 0
    try:
        while True:
            data = src.recv(buffer_size)
            if not data:
                break
            dst.sendall(data)
            copied += len(data)
    except Exception as e:
        error = RelayError(direction, e)
    finally:
        logger.debug(f"{direction} finished after {copied} bytes")
        completions.put((dst, error))


def _close(conn) -> None:
    try:
        conn.close()
    except OSError as e:
        logger.debug(f"Error closing {conn!r}: {e}")
