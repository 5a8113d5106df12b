"""Custom exception classes for the WebSocket tunnel client."""

from typing import Optional


class WSTunnelError(Exception):
    """Base exception for all tunnel related errors."""
    pass


class ConfigurationError(WSTunnelError):
    """Exception raised when configuration is invalid."""
    pass


class UpstreamError(WSTunnelError):
    """Exception raised when the upstream stream cannot be established."""
    pass


class DialError(UpstreamError):
    """Exception raised when dialing the target or a proxy fails."""
    pass


class HandshakeError(UpstreamError):
    """Exception raised when the TLS or WebSocket handshake fails."""
    pass


class RelayError(WSTunnelError):
    """Exception raised when one direction of a relay fails mid-session."""

    def __init__(self, direction: str, cause: BaseException):
        self.direction = direction
        self.cause = cause
        super().__init__(f"{direction}: {cause}")


class ListenerError(WSTunnelError):
    """Exception raised when the listening socket is unusable."""
    pass


class PortInUseError(ListenerError):
    """Exception raised when the listen address is already in use."""

    def __init__(self, port: int, address: Optional[str] = None):
        self.port = port
        self.address = address
        message = f"Port {port} is already in use"
        if address:
            message += f" on {address}"
        super().__init__(message)
