"""Per-key mutual exclusion."""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLocks:
    """
    A family of locks addressed by key.

    Holders of different keys never contend. A key's lock is discarded once
    no thread holds or waits for it, so the table only grows with the number
    of keys in use at the same time.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
