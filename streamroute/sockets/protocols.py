"""Socket and listener protocols consumed by the relay engine."""
from __future__ import annotations

from typing import Protocol
from typing import runtime_checkable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from streamroute.stats import SocketStats


@runtime_checkable
class Socket(Protocol):
    """Protocol for an established, bidirectional socket connection.

    A socket is the minimal read/write/identity capability the relay
    engine needs. Implementations signal fatal conditions (closed socket,
    broken pipe, reset, end-of-stream) by raising
    [`SocketError`][streamroute.exceptions.SocketError].
    """

    @property
    def id(self) -> int:
        """Process-unique identity of the socket."""
        ...

    @property
    def closed(self) -> bool:
        """Socket has been closed."""
        ...

    def close(self) -> None:
        """Close the socket and release the underlying resource."""
        ...

    def read(
        self,
        buffer: bytearray | memoryview,
        timeout: float | None = None,
    ) -> int:
        """Read data into a buffer.

        Args:
            buffer: Buffer to read at most `len(buffer)` bytes into.
            timeout: Seconds to wait for data. `None` waits indefinitely.

        Returns:
            Number of bytes read. Zero indicates a spurious wake-up (timeout \
            or empty datagram) rather than the end of the stream.

        Raises:
            SocketError: If the socket can no longer be read from.
        """
        ...

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Write data to the socket.

        Returns:
            Number of bytes written which may be less than `len(data)`.

        Raises:
            SocketError: If the socket can no longer be written to.
        """
        ...

    def stats(self) -> SocketStats:
        """Get a snapshot of the socket's traffic counters."""
        ...


@runtime_checkable
class Listener(Protocol):
    """Protocol for a socket that accepts inbound connections."""

    @property
    def closed(self) -> bool:
        """Listener has been closed."""
        ...

    def accept(self) -> Socket:
        """Block until a peer connects and return the connected socket.

        Raises:
            SocketError: If the listener is closed or accepting fails.
        """
        ...

    def close(self) -> None:
        """Stop accepting new connections."""
        ...
