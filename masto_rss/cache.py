"""In-memory cache of rendered feeds with single-flight fetching.

The first request for a key starts the fetch as a task and registers it;
concurrent requests for the same key await that task instead of starting
their own. Callers wait through ``asyncio.shield`` so a reader that
disconnects does not cancel the fetch other readers are waiting on. Only
complete results are stored.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class _Entry:
    value: bytes
    expires_at: float


class ResponseCache:
    """TTL cache keyed by FeedRequest.cache_key()."""

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, "asyncio.Task[bytes]"] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[bytes]:
        """Return a fresh cached value, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[bytes]]) -> bytes:
        cached = self.get(key)
        if cached is not None:
            logger.debug("feed_cache_hit", key=key[:12])
            return cached

        task = self._inflight.get(key)
        if task is None:
            logger.debug("feed_cache_miss", key=key[:12])
            task = asyncio.create_task(self._fill(key, fetch))
            task.add_done_callback(self._consume_exception)
            self._inflight[key] = task
        else:
            logger.debug("feed_fetch_joined", key=key[:12])

        return await asyncio.shield(task)

    async def _fill(self, key: str, fetch: Callable[[], Awaitable[bytes]]) -> bytes:
        try:
            value = await fetch()
            if self.ttl_seconds > 0:
                self._store(key, value)
            return value
        finally:
            self._inflight.pop(key, None)

    def _store(self, key: str, value: bytes) -> None:
        now = self._clock()
        self._entries[key] = _Entry(value=value, expires_at=now + self.ttl_seconds)

        expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for k in expired:
            del self._entries[k]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda k: self._entries[k].expires_at)
            for k in oldest[:overflow]:
                del self._entries[k]

    @staticmethod
    def _consume_exception(task: "asyncio.Task[bytes]") -> None:
        # Waiters re-raise the error; this only stops asyncio from warning
        # about it when every waiter has gone away.
        if not task.cancelled():
            task.exception()
