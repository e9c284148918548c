"""Atomic counting utilities."""
from __future__ import annotations

import threading


class AtomicCounter:
    """Thread-safe monotonic counter starting at zero.

    Used to hand out process-unique socket identities.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        """Get current count and increment value.

        Returns:
            Current count.
        """
        with self._lock:
            value = self._value
            self._value += 1
            return value
