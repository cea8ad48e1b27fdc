"""Per-key asyncio locks for serializing stock read-modify-write cycles."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Iterable, List


class KeyedLocks:
    """
    One asyncio.Lock per key, created on demand and dropped once unused.

    `hold()` acquires several keys in sorted order, so two callers asking for
    the same pair in opposite directions cannot deadlock.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: Hashable) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = remaining

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, keys: Iterable[Hashable]) -> AsyncIterator[List[Hashable]]:
        ordered = sorted(set(keys))
        acquired: List[Hashable] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield ordered
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)
