"""Exception types raised by sockets and the relay engine."""
from __future__ import annotations


class SocketError(Exception):
    """Base exception type for fatal errors on a socket.

    Raised when an established socket can no longer be read from or
    written to (e.g., broken pipe, connection reset, or closed socket).
    """

    pass


class SocketClosedError(SocketError):
    """Exception raised when a socket is closed or reached end-of-stream."""

    pass


class EndpointConnectionError(SocketError):
    """Exception raised when no endpoint in a list could be connected."""

    pass
