"""Common implementation of sockets wrapping the standard library."""
from __future__ import annotations

import logging
import socket
import sys
import threading
from types import TracebackType

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from streamroute.exceptions import SocketClosedError
from streamroute.exceptions import SocketError
from streamroute.stats import SocketStats
from streamroute.utils.counter import AtomicCounter

logger = logging.getLogger(__name__)

_socket_ids = AtomicCounter()


def next_socket_id() -> int:
    """Get a new process-unique socket identity."""
    return _socket_ids.increment()


class BaseSocket:
    """Base class for sockets backed by a [`socket.socket`][socket.socket].

    Handles identity, closing, traffic counters, and translation of
    [`OSError`][OSError] into
    [`SocketError`][streamroute.exceptions.SocketError]. Subclasses
    implement `_recv_into()` and `_send()`.

    Args:
        sock: Connected or bound socket. Ownership is transferred.
        description: Human readable description used in logs and stats.
    """

    def __init__(self, sock: socket.socket, description: str) -> None:
        self._sock = sock
        self._description = description
        self._id = next_socket_id()
        self._closed = False
        self._stats = SocketStats()
        self._stats_lock = threading.Lock()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(id={self._id}, '
            f'description={self._description!r})'
        )

    def __str__(self) -> str:
        return self._description

    @property
    def id(self) -> int:
        """Process-unique identity of the socket."""
        return self._id

    @property
    def closed(self) -> bool:
        """Socket has been closed."""
        return self._closed

    def close(self) -> None:
        """Close the socket. Calling more than once is a no-op."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Not connected or peer already gone.
            pass
        self._sock.close()
        logger.debug(f'Closed socket {self._id} ({self._description})')

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
            Number of bytes read. Zero if the timeout expired or an empty \
            datagram was received.

        Raises:
            SocketClosedError: If the socket is closed.
            SocketError: If reading fails.
        """
        if self._closed:
            raise SocketClosedError(f'Read on closed socket {self}.')

        try:
            self._sock.settimeout(timeout)
            nbytes = self._recv_into(buffer)
        except socket.timeout:
            nbytes = 0
        except OSError as e:
            if self._closed:
                raise SocketClosedError(f'Socket {self} was closed.') from e
            raise SocketError(f'Read from {self} failed: {e}') from e

        with self._stats_lock:
            if nbytes == 0:
                self._stats.spurious_reads += 1
            else:
                self._stats.bytes_read += nbytes
                self._stats.packets_read += 1
        return nbytes

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Write data to the socket.

        Returns:
            Number of bytes written which may be less than `len(data)`.

        Raises:
            SocketClosedError: If the socket is closed.
            SocketError: If writing fails.
        """
        if self._closed:
            raise SocketClosedError(f'Write on closed socket {self}.')

        try:
            nbytes = self._send(data)
        except socket.timeout:
            nbytes = 0
        except OSError as e:
            if self._closed:
                raise SocketClosedError(f'Socket {self} was closed.') from e
            raise SocketError(f'Write to {self} failed: {e}') from e

        with self._stats_lock:
            if nbytes > 0:
                self._stats.bytes_written += nbytes
                self._stats.packets_written += 1
            if nbytes != len(data):
                self._stats.partial_writes += 1
        return nbytes

    def stats(self) -> SocketStats:
        """Get a snapshot of the socket's traffic counters."""
        with self._stats_lock:
            return SocketStats(**self._stats.as_dict())

    def _recv_into(self, buffer: bytearray | memoryview) -> int:
        raise NotImplementedError

    def _send(self, data: bytes | bytearray | memoryview) -> int:
        raise NotImplementedError
