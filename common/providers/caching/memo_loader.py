import asyncio
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

from common.core.telemetry import get_logger

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class MemoLoader(Generic[K, V]):
    """
    Bounded LRU of computed values with per-key single-flight.

    Concurrent `get` calls for a key that is not cached share one in-flight
    computation; every caller receives its result or its exception. Only
    successful results are cached, and the least recently used entry is
    evicted once `capacity` is exceeded. Cancelling a caller only stops that
    caller from waiting; the computation runs on for the others.

    Usage:
        loader = MemoLoader(capacity=100)
        customer_id = await loader.get(org, lambda: find_customer(org))
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        self._inflight: Dict[K, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def peek(self, key: K) -> Optional[V]:
        """Return a cached value without touching recency or computing."""
        return self._entries.get(key)

    async def get(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value for key, computing it at most once at a time."""
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]

            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._load(key, compute))
                task.add_done_callback(_consume_exception)
                self._inflight[key] = task

        # a cancelled caller stops waiting; the load carries on for the rest
        return await asyncio.shield(task)

    async def _load(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        try:
            value = await compute()
        except BaseException:
            async with self._lock:
                self._inflight.pop(key, None)
            raise

        async with self._lock:
            self._inflight.pop(key, None)
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted memoized key {evicted!r}")
        return value

    async def put(self, key: K, value: V) -> None:
        """Seed the cache with a known value."""
        async with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    async def forget(self, key: K) -> bool:
        """Drop a cached value. Returns True if one was present."""
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


def _consume_exception(task: asyncio.Future) -> None:
    # A load whose callers were all cancelled may still fail; keep asyncio quiet.
    if not task.cancelled():
        task.exception()
