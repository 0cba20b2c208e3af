"""A thread-safe counter keyed by string."""

from __future__ import annotations

import threading


class Counter:
    """Counts per key; the first increment of a key sets it to zero."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[str, int] = {}

    def inc(self, key: str) -> None:
        with self._lock:
            if key in self._data:
                self._data[key] += 1
            else:
                self._data[key] = 0

    def delete_key(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def counts(self, key: str) -> int:
        """Return the count; KeyError if unknown, ValueError if negative."""
        with self._lock:
            if key not in self._data:
                raise KeyError(f"cannot get key {key}")
            value = self._data[key]
            if value < 0:
                raise ValueError(f"count {key}:{value} is negative")
            return value

    def dec(self, key: str) -> None:
        """Decrease the count; a count of one removes the key."""
        with self._lock:
            if key not in self._data:
                raise KeyError(f"cannot find key {key}")
            value = self._data[key]
            if value > 1:
                self._data[key] = value - 1
            elif value == 1:
                self.delete_key(key)
            else:
                raise ValueError(f"cannot minus one: key {key} has value {value}")