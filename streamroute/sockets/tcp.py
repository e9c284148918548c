"""TCP socket and listener implementations."""
from __future__ import annotations

import logging
import socket
import sys
from types import TracebackType

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from streamroute.endpoints import Endpoint
from streamroute.exceptions import SocketClosedError
from streamroute.exceptions import SocketError
from streamroute.sockets.base import BaseSocket

logger = logging.getLogger(__name__)


class TcpSocket(BaseSocket):
    """Connected TCP socket.

    The peer closing its end of the connection raises
    [`SocketClosedError`][streamroute.exceptions.SocketClosedError] on
    read rather than returning zero bytes.
    """

    def _recv_into(self, buffer: bytearray | memoryview) -> int:
        nbytes = self._sock.recv_into(buffer)
        if nbytes == 0 and len(buffer) > 0:
            raise SocketClosedError(f'Peer of {self} closed the connection.')
        return nbytes

    def _send(self, data: bytes | bytearray | memoryview) -> int:
        return self._sock.send(data)


class TcpListener:
    """TCP listening socket which accepts one peer at a time.

    Args:
        endpoint: Listener endpoint to bind to.

    Raises:
        OSError: If the socket cannot be bound.
    """

    def __init__(self, endpoint: Endpoint) -> None:
        self.endpoint = endpoint
        self._closed = False
        self._sock = socket.create_server(
            (endpoint.bind_address, endpoint.port),
            family=_family(endpoint.bind_address),
            backlog=1,
        )
        logger.info(f'Listening for TCP connections on {self.address}')

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
        return f'{self.__class__.__name__}(endpoint={str(self.endpoint)!r})'

    @property
    def address(self) -> tuple[str, int]:
        """Local address the listener is bound to."""
        return self._sock.getsockname()[:2]

    @property
    def closed(self) -> bool:
        """Listener has been closed."""
        return self._closed

    def accept(self) -> TcpSocket:
        """Block until a peer connects.

        Raises:
            SocketError: If the listener is closed or accepting fails.
        """
        if self._closed:
            raise SocketClosedError(f'Accept on closed listener {self}.')
        try:
            sock, address = self._sock.accept()
        except OSError as e:
            raise SocketError(f'Accept on {self} failed: {e}') from e
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        logger.info(f'Accepted TCP connection from {address}')
        return TcpSocket(sock, f'{self.endpoint} <- {address[0]}:{address[1]}')

    def close(self) -> None:
        """Stop accepting new connections."""
        if not self._closed:
            self._closed = True
            self._sock.close()
            logger.info(f'Closed TCP listener on {self.endpoint}')


def open_socket(endpoint: Endpoint) -> TcpSocket:
    """Connect to a TCP endpoint.

    Raises:
        OSError: If the connection cannot be established within
            `endpoint.connect_timeout` seconds.
    """
    sock = socket.create_connection(
        (endpoint.host, endpoint.port),
        timeout=endpoint.connect_timeout,
    )
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    logger.info(f'Connected TCP socket to {endpoint.host}:{endpoint.port}')
    return TcpSocket(sock, str(endpoint))


def create_listener(endpoint: Endpoint) -> TcpListener:
    """Create a listener bound to the endpoint's port."""
    return TcpListener(endpoint)


def _family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ':' in host else socket.AF_INET
