"""Fixtures and utilities for testing."""
from __future__ import annotations

import socket
import threading
import time
from typing import Callable


def open_port(kind: socket.SocketKind = socket.SOCK_STREAM) -> int:
    """Return an open port.

    Source: https://stackoverflow.com/questions/2838244
    """
    s = socket.socket(socket.AF_INET, kind)
    s.bind(('127.0.0.1', 0))
    port = s.getsockname()[1]
    s.close()
    return port


def wait_for(
    condition: Callable[[], bool],
    timeout: float = 5,
    interval: float = 0.01,
) -> None:
    """Poll until `condition()` is true.

    Raises:
        TimeoutError: If the condition is still false after `timeout`.
    """
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise TimeoutError('Condition was not met in time.')
        time.sleep(interval)


def run_in_thread(target: Callable[[], object]) -> threading.Thread:
    """Start a daemon thread running `target`."""
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread
