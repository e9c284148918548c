"""UDP socket implementation."""
from __future__ import annotations

import logging
import socket

from streamroute.endpoints import Endpoint
from streamroute.sockets.base import BaseSocket

logger = logging.getLogger(__name__)


class UdpSocket(BaseSocket):
    """UDP socket.

    A caller socket is connected to a remote address and only exchanges
    datagrams with it. A listener socket is bound to a local port and
    receives from anyone; the sender of the first datagram becomes the
    peer that writes are sent to.

    Warning:
        Writes on a listener socket are dropped (reported as zero bytes
        written) until the first datagram has been received.

    Args:
        sock: Connected or bound UDP socket.
        description: Human readable description used in logs and stats.
        connected: `sock` is connected to a remote address.
    """

    def __init__(
        self,
        sock: socket.socket,
        description: str,
        *,
        connected: bool,
    ) -> None:
        super().__init__(sock, description)
        self._connected = connected
        self._peer: tuple[str, int] | None = None

    @property
    def peer(self) -> tuple[str, int] | None:
        """Remote address datagrams are sent to, if known."""
        if self._connected:
            return self._sock.getpeername()
        return self._peer

    def _recv_into(self, buffer: bytearray | memoryview) -> int:
        if self._connected:
            return self._sock.recv_into(buffer)
        nbytes, address = self._sock.recvfrom_into(buffer)
        if self._peer is None:
            logger.info(f'{self} received first datagram from {address}')
            self._peer = address
        return nbytes

    def _send(self, data: bytes | bytearray | memoryview) -> int:
        if self._connected:
            return self._sock.send(data)
        if self._peer is None:
            logger.debug(f'{self} has no peer yet, dropping datagram')
            return 0
        return self._sock.sendto(data, self._peer)


def open_socket(endpoint: Endpoint) -> UdpSocket:
    """Open a UDP socket for an endpoint.

    Callers are connected to `endpoint.host`. Listeners are bound to
    `endpoint.bind_address` (all interfaces if empty).

    Raises:
        OSError: If resolving, binding, or connecting fails.
    """
    if endpoint.mode == 'listener':
        address = (endpoint.bind_address, endpoint.port)
        family = _family(address)
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
        except OSError:
            sock.close()
            raise
        logger.info(f'Bound UDP socket to {sock.getsockname()}')
        return UdpSocket(sock, str(endpoint), connected=False)

    address = (endpoint.host, endpoint.port)
    sock = socket.socket(_family(address), socket.SOCK_DGRAM)
    try:
        sock.connect(address)
    except OSError:
        sock.close()
        raise
    logger.info(f'Connected UDP socket to {address}')
    return UdpSocket(sock, str(endpoint), connected=True)


def _family(address: tuple[str, int]) -> socket.AddressFamily:
    host, port = address
    if not host:
        return socket.AF_INET
    info = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    return info[0][0]
