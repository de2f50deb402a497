"""
Per-key asyncio locks.

The lifecycle manager serialises read-modify-write cycles on the same trip
id through a ``KeyedLock`` so that, inside one process, an API status
update and an acceptance event queue behind each other instead of racing
into the store's compare-and-swap.  The lock is in-process only; it is
not a distributed lock.  Writers in other processes are kept apart solely
by the store's version compare-and-swap (``SqlTripStore`` updates with
``WHERE version = :expected``) and the manager's retry loop.

Locks are reference-counted and dropped from the registry as soon as the
last holder/waiter leaves, so the registry only ever holds ids that are
being mutated right now.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLock:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
