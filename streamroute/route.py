"""Relay data between two sockets with optional reconnection.

The relay engine is composed of three layers:

* [`pump()`][streamroute.route.pump] copies data from one socket to
  another in a single direction.
* [`route()`][streamroute.route.route] runs one pump, or two pumps in
  opposite directions when bidirectional relaying is enabled.
* [`RouteSupervisor`][streamroute.route.RouteSupervisor] connects both
  sides, runs [`route()`][streamroute.route.route], and repeats the cycle
  when reconnection is enabled.

All layers observe a shared [`threading.Event`][threading.Event] which,
once set, stops the relay. Setting the event does not interrupt a read
that is already blocked, or a listener waiting for a peer, so shutdown
may take up to one pending read or accept.
"""
from __future__ import annotations

import concurrent.futures
import enum
import logging
import threading
import time
from typing import Callable
from typing import Sequence

from streamroute.config import RouteConfig
from streamroute.connect import create_connection
from streamroute.connect import ListenerHandle
from streamroute.endpoints import Endpoint
from streamroute.exceptions import SocketError
from streamroute.sockets.protocols import Socket
from streamroute.stats import StatsCollector
from streamroute.utils.timer import Timer

logger = logging.getLogger(__name__)

ConnectFunction = Callable[[Sequence[Endpoint], ListenerHandle], Socket]


def pump(
    src: Socket,
    dst: Socket,
    message_size: int,
    cancel: threading.Event,
    desc: str = '',
) -> None:
    """Copy data from `src` to `dst` until cancelled.

    Each iteration blocks on a read from `src` and writes the bytes read to
    `dst`. A read returning zero bytes is treated as a spurious wake-up
    and retried. A write that accepts fewer bytes than were read is logged
    and the remainder is dropped.

    Args:
        src: Socket to read from.
        dst: Socket to write to.
        message_size: Maximum bytes per read.
        cancel: Event which stops the pump once set.
        desc: Description of the direction used as a log prefix.

    Raises:
        SocketError: If reading from `src` or writing to `dst` fails.
    """
    buffer = bytearray(message_size)
    view = memoryview(buffer)

    logger.info(f'{desc} Started')

    while not cancel.is_set():
        bytes_read = src.read(buffer, None)

        if bytes_read == 0:
            logger.info(
                f'{desc} read 0 bytes on a socket (spurious read-ready?). '
                'Retrying.',
            )
            continue

        bytes_written = dst.write(view[:bytes_read])
        if bytes_written != bytes_read:
            logger.info(
                f'{desc} write returned {bytes_written} bytes, '
                f'expected {bytes_read}',
            )

    logger.info(f'{desc} Stopped')


def route(
    src: Socket,
    dst: Socket,
    config: RouteConfig,
    cancel: threading.Event,
) -> None:
    """Relay data from `src` to `dst`, and back if `config.bidir`.

    The forward direction runs in the calling thread and the reverse
    direction in a background thread. One direction failing does not stop
    the other; this returns only once both directions have ended.

    Warning:
        If the source peer goes away while the destination is silent, the
        reverse direction stays blocked reading from `dst` and this does
        not return (so no reconnection happens) until `dst` sends data,
        fails, or is closed.

    Args:
        src: Source socket.
        dst: Destination socket.
        config: Relay configuration.
        cancel: Event which stops both directions once set.

    Raises:
        SocketError: The first error raised by either direction, checking
            the forward direction first. Errors from the other direction
            are logged.
    """
    if not config.bidir:
        pump(src, dst, config.message_size, cancel, '[SRC->DST]')
        return

    errors: list[SocketError] = []
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=1,
        thread_name_prefix='route-backward',
    ) as pool:
        backward = pool.submit(
            pump,
            dst,
            src,
            config.message_size,
            cancel,
            '[DST->SRC]',
        )

        try:
            pump(src, dst, config.message_size, cancel, '[SRC->DST]')
        except SocketError as e:
            errors.append(e)

        try:
            backward.result()
        except SocketError as e:
            errors.append(e)

    if len(errors) > 1:
        logger.error(f'[DST->SRC] {errors[1]}')
    if len(errors) > 0:
        raise errors[0]


class RouteState(enum.Enum):
    """States of a [`RouteSupervisor`][streamroute.route.RouteSupervisor]."""

    PACING = 'pacing'
    CONNECTING = 'connecting'
    RELAYING = 'relaying'
    CLOSING = 'closing'
    STOPPED = 'stopped'


class RouteSupervisor:
    """Run relay cycles with pacing and automatic reconnection.

    Each cycle waits until at least `config.reconnect_interval` seconds
    have passed since the previous connection attempt, connects the
    destination and then the source, registers both sockets with the
    stats collector, and relays with
    [`route()`][streamroute.route.route]. Once the relay ends the sockets
    are deregistered and closed.

    A [`SocketError`][streamroute.exceptions.SocketError] during a cycle,
    including failing to connect, is logged and ends the cycle. If
    `config.reconnect` is set another cycle is started, otherwise the
    supervisor stops.

    Listener endpoints keep their listening socket between cycles when
    reconnecting so later peers can connect to the same port. Without
    reconnection the listeners are closed as soon as both sides are
    connected.

    Example:
        ```python
        import threading

        from streamroute.config import RouteConfig
        from streamroute.endpoints import parse_endpoints
        from streamroute.route import RouteSupervisor

        cancel = threading.Event()
        supervisor = RouteSupervisor(
            parse_endpoints(['udp://:4200']),
            parse_endpoints(['tcp://example.com:5000']),
            RouteConfig(reconnect=True),
            cancel,
        )
        supervisor.run()  # Returns once cancel is set
        ```

    Args:
        src_endpoints: Candidate source endpoints.
        dst_endpoints: Candidate destination endpoints.
        config: Relay configuration.
        cancel: Event which stops the supervisor once set. The supervisor
            never sets this itself.
        stats: Optional collector notified of the sockets of each cycle.
        connect: Function used to connect one side.
    """

    def __init__(
        self,
        src_endpoints: Sequence[Endpoint],
        dst_endpoints: Sequence[Endpoint],
        config: RouteConfig,
        cancel: threading.Event,
        *,
        stats: StatsCollector | None = None,
        connect: ConnectFunction = create_connection,
    ) -> None:
        self.src_endpoints = tuple(src_endpoints)
        self.dst_endpoints = tuple(dst_endpoints)
        self.config = config
        self.cancel = cancel
        self.stats = stats

        self._connect = connect
        self._src_listener = ListenerHandle()
        self._dst_listener = ListenerHandle()
        self._state = RouteState.PACING
        self._next_attempt = time.monotonic()

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(state={self._state.name}, '
            f'reconnect={self.config.reconnect})'
        )

    @property
    def state(self) -> RouteState:
        """Current state."""
        return self._state

    def run(self) -> int:
        """Run relay cycles until stopped.

        Returns:
            Number of cycles in which both sides were connected.
        """
        cycles = 0
        try:
            while self._pace():
                if self._cycle():
                    cycles += 1
                if not self.config.reconnect:
                    break
        finally:
            self._src_listener.release()
            self._dst_listener.release()
            self._state = RouteState.STOPPED
            logger.info(f'Route stopped after {cycles} cycle(s)')
        return cycles

    def _pace(self) -> bool:
        self._state = RouteState.PACING
        if self.cancel.is_set():
            return False

        delay = self._next_attempt - time.monotonic()
        if delay > 0:
            logger.debug(f'Waiting {delay:.3f}s before connecting')
        while delay > 0:
            if self.cancel.wait(delay):
                return False
            delay = self._next_attempt - time.monotonic()

        self._next_attempt = time.monotonic() + self.config.reconnect_interval
        return not self.cancel.is_set()

    def _cycle(self) -> bool:
        self._state = RouteState.CONNECTING
        src: Socket | None = None
        dst: Socket | None = None
        registered: list[Socket] = []
        try:
            dst = self._connect(self.dst_endpoints, self._dst_listener)
            src = self._connect(self.src_endpoints, self._src_listener)

            if not self.config.reconnect:
                self._src_listener.release()
                self._dst_listener.release()

            self._state = RouteState.RELAYING
            if self.stats is not None:
                for sock in (src, dst):
                    self.stats.add_socket(sock)
                    registered.append(sock)

            with Timer() as timer:
                route(src, dst, self.config, self.cancel)
            logger.info(f'Route finished after {timer.elapsed_s:.3f}s')
        except SocketError as e:
            logger.error(f'Route cycle failed: {e}')
        finally:
            self._state = RouteState.CLOSING
            try:
                self._deregister(registered)
            finally:
                for sock in (src, dst):
                    if sock is not None:
                        sock.close()

        return src is not None and dst is not None

    def _deregister(self, registered: list[Socket]) -> None:
        if self.stats is None:
            return
        for sock in registered:
            try:
                self.stats.remove_socket(sock.id)
            except OSError as e:
                logger.error(f'Failed to remove stats of {sock}: {e}')


def run(
    src_endpoints: Sequence[Endpoint],
    dst_endpoints: Sequence[Endpoint],
    config: RouteConfig,
    cancel: threading.Event,
    *,
    stats: StatsCollector | None = None,
    connect: ConnectFunction = create_connection,
) -> int:
    """Relay between endpoints until stopped.

    Convenience wrapper around
    [`RouteSupervisor.run()`][streamroute.route.RouteSupervisor.run].

    Returns:
        Number of cycles in which both sides were connected.
    """
    supervisor = RouteSupervisor(
        src_endpoints,
        dst_endpoints,
        config,
        cancel,
        stats=stats,
        connect=connect,
    )
    return supervisor.run()
