"""
Per-key async locks.

Serializes work on one shipment inside this process: two concurrent
create_label calls for the same shipment run one after the other, so the
second sees the first one's label. The partial unique index on labels is
the cross-process backstop.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLockManager:
    """
    Manages one asyncio.Lock per key.

    Locks are dropped once no task holds or waits on them, so the table
    does not grow with every shipment ever processed.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}
        self._lock = asyncio.Lock()  # Protects _locks / _waiters

    @asynccontextmanager
    async def hold(self, key: Hashable):
        async with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = asyncio.Lock()
            self._waiters[key] = self._waiters.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            async with self._lock:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
