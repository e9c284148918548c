from __future__ import annotations

import threading
import time

import pytest

from streamroute.config import RouteConfig
from streamroute.endpoints import parse_endpoints
from streamroute.exceptions import EndpointConnectionError
from streamroute.exceptions import SocketError
from streamroute.route import RouteState
from streamroute.route import RouteSupervisor
from streamroute.route import run
from testing.sockets import FakeConnect
from testing.sockets import RecordingStats
from testing.sockets import ScriptedSocket
from testing.utils import run_in_thread
from testing.utils import wait_for

SRC = parse_endpoints(['udp://:4200'])
DST = parse_endpoints(['tcp://localhost:5000', 'tcp://localhost:5001'])

# Keep pacing short so tests run quickly
_INTERVAL = 0.05


def _config(**kwargs) -> RouteConfig:
    kwargs.setdefault('reconnect_interval', _INTERVAL)
    return RouteConfig(**kwargs)


def test_single_cycle_without_reconnect(cancel: threading.Event) -> None:
    src = ScriptedSocket('src', [b'data', SocketError('done')])
    dst = ScriptedSocket('dst')
    connect = FakeConnect(SRC, DST, [src], [dst])

    cycles = run(SRC, DST, _config(), cancel, connect=connect)

    assert cycles == 1
    assert dst.writes == [b'data']
    assert src.closed
    assert dst.closed
    assert [side for side, _ in connect.calls] == ['dst', 'src']


def test_destination_connected_before_source(cancel: threading.Event) -> None:
    log: list[str] = []
    src = ScriptedSocket('src', [b'data'], cancel=cancel, log=log)
    dst = ScriptedSocket('dst', log=log)
    connect = FakeConnect(SRC, DST, [src], [dst], log=log)

    run(SRC, DST, _config(), cancel, connect=connect)

    assert log[:3] == ['connect:dst', 'connect:src', 'src.read']


def test_stats_registered_around_relay(cancel: threading.Event) -> None:
    log: list[str] = []
    src = ScriptedSocket('src', [b'x', SocketError('reset')], log=log)
    dst = ScriptedSocket('dst', log=log)
    stats = RecordingStats(log)
    connect = FakeConnect(SRC, DST, [src], [dst])

    run(SRC, DST, _config(), cancel, stats=stats, connect=connect)

    assert log == [
        'add:src',
        'add:dst',
        'src.read',
        'dst.write',
        'src.read',
        'remove:src',
        'remove:dst',
    ]
    assert stats.active == {}


@pytest.mark.timeout(5)
def test_stats_removed_after_both_directions_end(
    cancel: threading.Event,
) -> None:
    log: list[str] = []
    reverse_gate = threading.Event()
    src = ScriptedSocket('src', [SocketError('forward failed')], log=log)
    dst = ScriptedSocket('dst', [reverse_gate, b'late'], log=log)
    stats = RecordingStats(log)
    connect = FakeConnect(SRC, DST, [src], [dst])

    thread = run_in_thread(
        lambda: run(
            SRC,
            DST,
            _config(bidir=True),
            cancel,
            stats=stats,
            connect=connect,
        ),
    )
    wait_for(lambda: 'dst.read' in log)
    time.sleep(0.1)
    assert 'remove:src' not in log

    reverse_gate.set()
    thread.join()

    # The reverse direction wrote its data before deregistration started
    assert log.index('src.write') < log.index('remove:src')
    assert log[-2:] == ['remove:src', 'remove:dst']


def test_connection_error_is_absorbed(cancel: threading.Event, caplog) -> None:
    connect = FakeConnect(
        SRC,
        DST,
        [],
        [EndpointConnectionError('nothing listening')],
    )

    cycles = run(SRC, DST, _config(), cancel, connect=connect)

    assert cycles == 0
    assert len(connect.calls) == 1
    assert any(
        'nothing listening' in r.message and r.levelname == 'ERROR'
        for r in caplog.records
    )


def test_source_failure_closes_destination(cancel: threading.Event) -> None:
    dst = ScriptedSocket('dst')
    stats = RecordingStats()
    connect = FakeConnect(
        SRC,
        DST,
        [EndpointConnectionError('no source')],
        [dst],
    )

    cycles = run(SRC, DST, _config(), cancel, stats=stats, connect=connect)

    assert cycles == 0
    assert dst.closed
    assert stats.log == []


@pytest.mark.timeout(5)
def test_reconnect_after_failures(cancel: threading.Event) -> None:
    src1 = ScriptedSocket('src1', [b'first', SocketError('reset')])
    dst1 = ScriptedSocket('dst1')
    src2 = ScriptedSocket('src2', [b'second', SocketError('reset')])
    dst2 = ScriptedSocket('dst2')
    connect = FakeConnect(
        SRC,
        DST,
        [src1, src2],
        [EndpointConnectionError('down'), dst1, dst2],
        cancel=cancel,
    )

    cycles = run(SRC, DST, _config(reconnect=True), cancel, connect=connect)

    assert cycles == 2
    assert dst1.writes == [b'first']
    assert dst2.writes == [b'second']
    assert all(s.closed for s in (src1, dst1, src2, dst2))


@pytest.mark.timeout(5)
def test_reconnect_attempts_are_paced(cancel: threading.Event) -> None:
    interval = 0.1
    connect = FakeConnect(
        SRC,
        DST,
        [],
        [EndpointConnectionError('down')] * 4,
        cancel=cancel,
    )

    run(
        SRC,
        DST,
        _config(reconnect=True, reconnect_interval=interval),
        cancel,
        connect=connect,
    )

    times = [t for side, t in connect.calls if side == 'dst']
    assert len(times) == 5
    gaps = [b - a for a, b in zip(times, times[1:])]
    assert all(gap >= interval * 0.99 for gap in gaps)


@pytest.mark.timeout(5)
def test_cancel_interrupts_pacing(cancel: threading.Event) -> None:
    connect = FakeConnect(SRC, DST, [], [EndpointConnectionError('down')])
    supervisor = RouteSupervisor(
        SRC,
        DST,
        _config(reconnect=True, reconnect_interval=60),
        cancel,
        connect=connect,
    )

    thread = run_in_thread(supervisor.run)
    wait_for(lambda: len(connect.calls) == 1)
    wait_for(lambda: supervisor.state == RouteState.PACING)
    start = time.monotonic()
    cancel.set()
    thread.join()

    assert time.monotonic() - start < 5
    assert supervisor.state == RouteState.STOPPED
    assert len(connect.calls) == 1


def test_cancelled_before_run(cancel: threading.Event) -> None:
    cancel.set()
    connect = FakeConnect(SRC, DST, [], [])
    supervisor = RouteSupervisor(SRC, DST, _config(), cancel, connect=connect)

    assert supervisor.run() == 0
    assert connect.calls == []
    assert supervisor.state == RouteState.STOPPED


@pytest.mark.timeout(5)
def test_cancel_stops_relay_and_reconnect(cancel: threading.Event) -> None:
    src = ScriptedSocket('src', [b'a', b'b'], cancel=cancel)
    dst = ScriptedSocket('dst')
    connect = FakeConnect(SRC, DST, [src], [dst])

    cycles = run(SRC, DST, _config(reconnect=True), cancel, connect=connect)

    assert cycles == 1
    assert dst.writes == [b'a', b'b']
    assert len(connect.calls) == 2


def test_listener_handles_released_without_reconnect(
    cancel: threading.Event,
) -> None:
    src = ScriptedSocket('src', [SocketError('done')])
    dst = ScriptedSocket('dst')
    connect = FakeConnect(SRC, DST, [src], [dst])

    class _Listener:
        closed = False

        def close(self) -> None:
            self.closed = True

    listeners: list[_Listener] = []

    def _connect(endpoints, handle):
        listener = _Listener()
        handle.set(listener)
        listeners.append(listener)
        return connect(endpoints, handle)

    run(SRC, DST, _config(), cancel, connect=_connect)

    assert len(listeners) == 2
    assert all(listener.closed for listener in listeners)
    assert all(handle.listener is None for handle in connect.handles)


@pytest.mark.timeout(5)
def test_listener_handles_kept_between_reconnects(
    cancel: threading.Event,
) -> None:
    src1 = ScriptedSocket('src1', [SocketError('reset')])
    src2 = ScriptedSocket('src2', [SocketError('reset')])
    connect = FakeConnect(
        SRC,
        DST,
        [src1, src2],
        [ScriptedSocket('dst1'), ScriptedSocket('dst2')],
        cancel=cancel,
    )
    closed_during_run: list[bool] = []

    class _Listener:
        closed = False

        def close(self) -> None:
            self.closed = True

    src_listener = _Listener()

    def _connect(endpoints, handle):
        if endpoints == supervisor.src_endpoints:
            if handle.listener is None:
                handle.set(src_listener)
            closed_during_run.append(src_listener.closed)
        return connect(endpoints, handle)

    supervisor = RouteSupervisor(
        SRC,
        DST,
        _config(reconnect=True),
        cancel,
        connect=_connect,
    )
    assert supervisor.run() == 2

    # The same listener was passed to every source connection attempt and
    # only closed once the supervisor stopped.
    src_handles = connect.handles[1::2]
    assert all(h is src_handles[0] for h in src_handles)
    assert closed_during_run == [False, False]
    assert src_listener.closed


def test_unexpected_error_propagates_after_cleanup(
    cancel: threading.Event,
) -> None:
    src = ScriptedSocket('src', [RuntimeError('bug')])
    dst = ScriptedSocket('dst')
    stats = RecordingStats()
    connect = FakeConnect(SRC, DST, [src], [dst])
    supervisor = RouteSupervisor(
        SRC,
        DST,
        _config(reconnect=True),
        cancel,
        stats=stats,
        connect=connect,
    )

    with pytest.raises(RuntimeError, match='bug'):
        supervisor.run()

    assert src.closed
    assert dst.closed
    assert stats.log[-2:] == ['remove:src', 'remove:dst']
    assert supervisor.state == RouteState.STOPPED


class _FailingStats(RecordingStats):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    def remove_socket(self, sock_id: int) -> None:
        super().remove_socket(sock_id)
        raise self.error


@pytest.mark.timeout(5)
def test_stats_write_failure_does_not_stop_reconnect(
    cancel: threading.Event,
    caplog,
) -> None:
    src1 = ScriptedSocket('src1', [SocketError('reset')])
    dst1 = ScriptedSocket('dst1')
    src2 = ScriptedSocket('src2', [SocketError('reset')])
    dst2 = ScriptedSocket('dst2')
    stats = _FailingStats(OSError('disk full'))
    connect = FakeConnect(
        SRC,
        DST,
        [src1, src2],
        [dst1, dst2],
        cancel=cancel,
    )

    cycles = run(
        SRC,
        DST,
        _config(reconnect=True),
        cancel,
        stats=stats,
        connect=connect,
    )

    assert cycles == 2
    assert all(s.closed for s in (src1, dst1, src2, dst2))
    # Both sockets of each cycle were deregistered despite the failures
    assert stats.active == {}
    assert stats.log.count('remove:src1') == 1
    assert stats.log.count('remove:dst2') == 1
    assert any(
        'disk full' in r.message and r.levelname == 'ERROR'
        for r in caplog.records
    )


def test_failing_collector_never_skips_close(
    cancel: threading.Event,
) -> None:
    src = ScriptedSocket('src', [SocketError('reset')])
    dst = ScriptedSocket('dst')
    stats = _FailingStats(RuntimeError('collector bug'))
    connect = FakeConnect(SRC, DST, [src], [dst])
    supervisor = RouteSupervisor(
        SRC,
        DST,
        _config(),
        cancel,
        stats=stats,
        connect=connect,
    )

    with pytest.raises(RuntimeError, match='collector bug'):
        supervisor.run()

    assert src.closed
    assert dst.closed
    assert supervisor.state == RouteState.STOPPED
