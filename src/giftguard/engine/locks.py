"""Per-key mutual exclusion.

Evaluations for one user (and reviews for one creator) are read-modify-write
sequences over shared rows, so they must not interleave. ``KeyedLock`` hands
out one ``threading.Lock`` per key and drops it again once nobody holds or
waits on it. Different keys never block each other.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """A map of mutexes keyed by string, created and released on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until ``key`` is free, then hold it for the ``with`` body."""
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._refs[key] = self._refs.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]

    def active_keys(self) -> List[str]:
        """Keys currently held or waited on."""
        with self._guard:
            return list(self._locks)
