"""Keyed locks for serializing per-profile mutations."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class KeyedLock:
    """Hand out one re-entrant lock per key."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def _get_lock(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._get_lock(key)
        with lock:
            yield


class NullLock(KeyedLock):
    """Keyed lock that never blocks, for deployments that accept the race."""

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        yield


__all__ = ["KeyedLock", "NullLock"]
