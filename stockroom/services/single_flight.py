import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable

from stockroom.services.exceptions import ConcurrentRun

logger = logging.getLogger(__name__)


class SingleFlight:
    """
    At most one holder per key within this process.

    Locks are created on first use and dropped again once nobody holds or
    waits on them, so the registry only ever contains keys in flight.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._refs: Dict[Hashable, int] = {}

    def is_running(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable, wait: bool = True) -> AsyncIterator[None]:
        if not wait and self.is_running(key):
            raise ConcurrentRun(key)

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            if lock.locked():
                logger.info(f"Waiting for in-flight run on key {key}")
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]
