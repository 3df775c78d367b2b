from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """One mutex per key, created on demand and dropped when unused.

    Holders of different keys never contend; the registry lock is held only
    while looking up or releasing an entry.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refcounts: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._refcounts[key] = 0
            self._refcounts[key] += 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._registry_lock:
                self._refcounts[key] -= 1
                if self._refcounts[key] == 0:
                    del self._refcounts[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._registry_lock:
            return len(self._locks)
