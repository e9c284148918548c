"""Timing utilities."""
from __future__ import annotations

import sys
import time
from types import TracebackType

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self


class Timer:
    """Monotonic wall-clock timer.

    Example:
        ```python
        from streamroute.utils.timer import Timer

        with Timer() as timer:
            ...

        print(timer.elapsed_s)
        ```

    Raises:
        RuntimeError: If the elapsed time is accessed before the timer is
            started, or before it is stopped.
    """

    def __init__(self) -> None:
        self._start: int | None = None
        self._end: int | None = None

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        self.stop()

    @property
    def elapsed_ns(self) -> int:
        """Elapsed time in nanoseconds."""
        if self._start is None:
            raise RuntimeError('Timer was never started!')
        if self._end is None:
            raise RuntimeError('Timer is still running!')
        return self._end - self._start

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds."""
        return self.elapsed_ns / 1e6

    @property
    def elapsed_s(self) -> float:
        """Elapsed time in seconds."""
        return self.elapsed_ns / 1e9

    def start(self) -> None:
        """Start (or restart) the timer."""
        self._end = None
        self._start = time.monotonic_ns()

    def stop(self) -> None:
        """Stop the timer."""
        self._end = time.monotonic_ns()
