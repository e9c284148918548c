"""Socket statistics collection and reporting."""
from __future__ import annotations

import dataclasses
import json
import logging
import pathlib
import sys
import threading
import time
from types import TracebackType
from typing import Any
from typing import Protocol
from typing import runtime_checkable
from typing import TYPE_CHECKING

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

if TYPE_CHECKING:
    from streamroute.sockets.protocols import Socket

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class SocketStats:
    """Traffic counters of a socket.

    Attributes:
        bytes_read: Total bytes read.
        bytes_written: Total bytes written.
        packets_read: Number of reads that returned data.
        packets_written: Number of writes that accepted data.
        spurious_reads: Number of reads that returned no data.
        partial_writes: Number of writes that accepted fewer bytes than
            requested.
    """

    bytes_read: int = 0
    bytes_written: int = 0
    packets_read: int = 0
    packets_written: int = 0
    spurious_reads: int = 0
    partial_writes: int = 0

    def __sub__(self, other: SocketStats) -> SocketStats:
        return SocketStats(
            **{
                field.name: getattr(self, field.name)
                - getattr(other, field.name)
                for field in dataclasses.fields(self)
            },
        )

    def as_dict(self) -> dict[str, Any]:
        """Convert the dataclass to a [`dict`][dict]."""
        return dataclasses.asdict(self)


@runtime_checkable
class StatsCollector(Protocol):
    """Receives lifecycle events of the sockets used by a relay cycle."""

    def add_socket(self, sock: Socket) -> None:
        """Start tracking a socket."""
        ...

    def remove_socket(self, sock_id: int) -> None:
        """Stop tracking the socket with the given identity."""
        ...


class StatsWriter:
    """Periodically append socket statistics to a JSON lines file.

    Each report is one JSON object per registered socket containing the
    socket identity, its description, the cumulative counters from
    [`Socket.stats()`][streamroute.sockets.protocols.Socket.stats], and
    the change of each counter since the previous report of that socket.
    A final report is written for a socket when it is removed.

    The writer only ever reads from the sockets it tracks.

    Tip:
        This class can be used as a context manager which will call
        [`close()`][streamroute.stats.StatsWriter.close] on exit.

    Args:
        filepath: File to append reports to. Parent directories are
            created if needed.
        interval: Seconds between reports.

    Raises:
        ValueError: If `interval` is not positive.
    """

    def __init__(
        self,
        filepath: str | pathlib.Path,
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError(f'Interval must be > 0. Got {interval}.')

        self.filepath = pathlib.Path(filepath)
        self.interval = interval
        self.filepath.parent.mkdir(parents=True, exist_ok=True)

        self._sockets: dict[int, Socket] = {}
        self._last: dict[int, SocketStats] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name='stats-writer',
            daemon=True,
        )
        self._thread.start()

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
            f'{self.__class__.__name__}(filepath={str(self.filepath)!r}, '
            f'interval={self.interval})'
        )

    def add_socket(self, sock: Socket) -> None:
        """Start reporting statistics of a socket."""
        with self._lock:
            self._sockets[sock.id] = sock
            self._last[sock.id] = SocketStats()
        logger.debug(f'Tracking stats of socket {sock.id} ({sock})')

    def remove_socket(self, sock_id: int) -> None:
        """Write a final report for a socket and stop tracking it.

        Unknown identities are ignored. Failing to write the final report
        is logged and the socket is still removed.
        """
        with self._lock:
            sock = self._sockets.pop(sock_id, None)
            if sock is None:
                return
            record = self._record(sock)
            del self._last[sock_id]
            try:
                self._append([record])
            except OSError as e:
                logger.error(
                    f'Failed to write final stats of socket {sock_id} to '
                    f'{self.filepath}: {e}',
                )
        logger.debug(f'Stopped tracking stats of socket {sock_id}')

    def sockets(self) -> list[int]:
        """Identities of the sockets currently tracked."""
        with self._lock:
            return list(self._sockets)

    def write_reports(self) -> None:
        """Write a report for every tracked socket now."""
        with self._lock:
            records = [self._record(sock) for sock in self._sockets.values()]
            self._append(records)

    def close(self) -> None:
        """Stop the periodic reporting thread.

        Sockets still tracked get a final report.
        """
        self._stop.set()
        self._thread.join()
        for sock_id in self.sockets():
            self.remove_socket(sock_id)

    def _record(self, sock: Socket) -> dict[str, Any]:
        # Caller must hold self._lock.
        current = sock.stats()
        delta = current - self._last[sock.id]
        self._last[sock.id] = current
        return {
            'timestamp': time.time(),
            'socket_id': sock.id,
            'socket': str(sock),
            'total': current.as_dict(),
            'interval': delta.as_dict(),
        }

    def _append(self, records: list[dict[str, Any]]) -> None:
        if len(records) == 0:
            return
        with open(self.filepath, 'a') as f:
            for record in records:
                f.write(json.dumps(record) + '\n')

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.write_reports()
            except OSError as e:
                logger.error(
                    f'Failed to write stats to {self.filepath}: {e}',
                )
