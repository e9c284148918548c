"""Establish connections against an ordered list of candidate endpoints.

Accepting a peer on a listener blocks until a peer connects. Like a
blocking read, this is not interrupted by the relay's cancellation event.
"""
from __future__ import annotations

import logging
from typing import Callable
from typing import NamedTuple
from typing import Sequence

from streamroute.endpoints import Endpoint
from streamroute.exceptions import EndpointConnectionError
from streamroute.exceptions import SocketError
from streamroute.sockets import tcp
from streamroute.sockets import udp
from streamroute.sockets.protocols import Listener
from streamroute.sockets.protocols import Socket

logger = logging.getLogger(__name__)


class Transport(NamedTuple):
    """Functions implementing a transport scheme.

    Attributes:
        open_socket: Open a socket for an endpoint. Callers connect to the
            endpoint; connectionless transports also use this for
            listener endpoints.
        create_listener: Create a listener for an endpoint in listener
            mode. `None` if the transport has no notion of accepting
            connections.
    """

    open_socket: Callable[[Endpoint], Socket]
    create_listener: Callable[[Endpoint], Listener] | None = None


_TRANSPORTS: dict[str, Transport] = {}


def register_scheme(scheme: str, transport: Transport) -> None:
    """Register (or replace) the transport used for a URI scheme."""
    _TRANSPORTS[scheme.lower()] = transport


def is_supported(scheme: str) -> bool:
    """Check if a transport is registered for the scheme."""
    return scheme.lower() in _TRANSPORTS


def get_transport(scheme: str) -> Transport:
    """Get the transport registered for a scheme.

    Raises:
        ValueError: If no transport is registered for the scheme.
    """
    try:
        return _TRANSPORTS[scheme.lower()]
    except KeyError:
        raise ValueError(
            f'Unsupported endpoint scheme {scheme!r}. Supported schemes: '
            f'{", ".join(sorted(_TRANSPORTS))}.',
        ) from None


register_scheme('tcp', Transport(tcp.open_socket, tcp.create_listener))
register_scheme('udp', Transport(udp.open_socket))


class ListenerHandle:
    """Holder of a listener that persists across relay cycles.

    The handle is owned by the caller of
    [`create_connection()`][streamroute.connect.create_connection] and
    passed to it on every cycle so a listening socket created in one cycle
    is reused to accept the next peer instead of being bound again.
    """

    def __init__(self) -> None:
        self._listener: Listener | None = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(listener={self._listener!r})'

    @property
    def listener(self) -> Listener | None:
        """The open listener, if any."""
        if self._listener is not None and self._listener.closed:
            self._listener = None
        return self._listener

    def set(self, listener: Listener) -> None:
        """Take ownership of a listener, releasing any previous one."""
        if self._listener is not None and self._listener is not listener:
            self._listener.close()
        self._listener = listener

    def release(self) -> None:
        """Close the listener so no further connections are accepted."""
        if self._listener is not None:
            self._listener.close()
            self._listener = None


def create_connection(
    endpoints: Sequence[Endpoint],
    listener: ListenerHandle | None = None,
) -> Socket:
    """Connect a socket using the first endpoint that succeeds.

    The mode of the first endpoint determines the semantics. In caller
    mode each endpoint is tried in order until one connects. In listener
    mode a listener is created on the first endpoint that can be bound and
    one peer is accepted. If `listener` already holds an open listener from
    a previous call, it is used to accept the peer instead.

    Args:
        endpoints: Ordered candidate endpoints.
        listener: Optional handle that stores a created listener for reuse
            by later calls. If `None`, a created listener is closed once
            the peer has been accepted.

    Note:
        In listener mode this blocks without a timeout until a peer
        connects.

    Returns:
        Connected socket.

    Raises:
        EndpointConnectionError: If no endpoint could be connected.
        ValueError: If `endpoints` is empty or an endpoint has an
            unsupported scheme.
    """
    if len(endpoints) == 0:
        raise ValueError('At least one endpoint is required.')

    first = endpoints[0]
    if (
        first.mode == 'listener'
        and get_transport(first.scheme).create_listener is not None
    ):
        return _accept(endpoints, listener)
    return _connect(endpoints)


def _connect(endpoints: Sequence[Endpoint]) -> Socket:
    for endpoint in endpoints:
        transport = get_transport(endpoint.scheme)
        try:
            return transport.open_socket(endpoint)
        except (OSError, SocketError) as e:
            logger.warning(f'Failed to connect to {endpoint}: {e}')

    raise EndpointConnectionError(
        'Failed to connect to any endpoint: '
        f'{", ".join(str(e) for e in endpoints)}.',
    )


def _accept(
    endpoints: Sequence[Endpoint],
    handle: ListenerHandle | None,
) -> Socket:
    if handle is not None and handle.listener is not None:
        logger.info(f'Reusing listener {handle.listener!r}')
        return handle.listener.accept()

    for endpoint in endpoints:
        transport = get_transport(endpoint.scheme)
        if endpoint.mode != 'listener' or transport.create_listener is None:
            continue
        try:
            listener = transport.create_listener(endpoint)
        except (OSError, SocketError) as e:
            logger.warning(f'Failed to listen on {endpoint}: {e}')
            continue

        if handle is not None:
            handle.set(listener)
            return listener.accept()

        try:
            return listener.accept()
        finally:
            listener.close()

    raise EndpointConnectionError(
        'Failed to listen on any endpoint: '
        f'{", ".join(str(e) for e in endpoints)}.',
    )
