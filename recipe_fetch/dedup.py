"""Request deduplication with a time-to-live result cache"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger

from .config import CACHE_CLEANUP_INTERVAL, DEFAULT_CACHE_TTL
from .models import CacheEntry


@dataclass
class PendingExecution:
    """The single in-flight execution for a key, shared by all its callers"""

    task: asyncio.Future
    started_at: float
    waiters: int = 0


class RequestDeduplicator:
    """
    Collapses concurrent identical requests into one execution and caches
    successful results for `ttl` seconds.
    """

    def __init__(
        self,
        name: str = "RequestDeduplicator",
        ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._pending: Dict[str, PendingExecution] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    async def execute(
        self,
        key: str,
        func: Callable[[], Awaitable[Any]],
        *,
        force_refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Run `func` at most once per key at a time.

        Cached values are returned unless `force_refresh` is set; callers that
        arrive while an execution is in flight share its outcome.
        """
        if not force_refresh:
            entry = self._get_cached(key)
            if entry is not None:
                logger.debug(f"[{self.name}] Cache HIT for: {key}")
                return entry.value

        pending = self._pending.get(key)
        if pending is not None:
            pending.waiters += 1
            logger.debug(f"[{self.name}] Request already pending, joining: {key}")
            return await asyncio.shield(pending.task)

        logger.debug(f"[{self.name}] New request for: {key}")
        return await self._run(key, func, self.ttl if ttl is None else ttl)

    async def _run(self, key: str, func: Callable[[], Awaitable[Any]], ttl: float) -> Any:
        # The work runs in its own task so a cancelled caller does not cancel
        # it for everyone else sharing the key
        task = asyncio.ensure_future(func())
        pending = PendingExecution(task=task, started_at=self._clock())
        self._pending[key] = pending
        task.add_done_callback(lambda done: self._finish(key, pending, ttl))
        return await asyncio.shield(task)

    def _finish(self, key: str, pending: PendingExecution, ttl: float) -> None:
        if self._pending.get(key) is pending:
            del self._pending[key]

        task = pending.task
        if task.cancelled():
            logger.debug(f"[{self.name}] Request cancelled for: {key}")
            return

        # Retrieving the exception also keeps an unawaited failure quiet on GC
        error = task.exception()
        if error is not None:
            logger.debug(
                f"[{self.name}] Request failed for: {key} ({pending.waiters} waiters): {error}"
            )
            return

        self._store(key, task.result(), ttl)
        logger.debug(
            f"[{self.name}] Request completed for: {key} ({pending.waiters} waiters)"
        )

    def _get_cached(self, key: str) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.debug(f"[{self.name}] Cache EXPIRED for: {key}")
            del self._cache[key]
            return None
        return entry

    def _store(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        self._cache[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)
        logger.debug(f"[{self.name}] Cached result for: {key} (TTL: {ttl:.0f}s)")

    def get_cached(self, key: str) -> Optional[Any]:
        entry = self._get_cached(key)
        return entry.value if entry is not None else None

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def invalidate(self, key: str) -> bool:
        """Drop one cache entry"""
        if self._cache.pop(key, None) is not None:
            logger.debug(f"[{self.name}] Invalidated cache for: {key}")
            return True
        return False

    def clear_cache(self) -> int:
        size = len(self._cache)
        self._cache.clear()
        logger.info(f"[{self.name}] Cleared {size} cache entries")
        return size

    def cleanup_expired(self) -> int:
        """Remove expired entries, returning how many were dropped"""
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"[{self.name}] Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cache_size": len(self._cache),
            "pending_requests": len(self._pending),
            "cache_keys": list(self._cache),
        }

    def start_cleanup_task(self, interval: float = CACHE_CLEANUP_INTERVAL) -> asyncio.Task:
        """Sweep expired entries every `interval` seconds until stopped"""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        async def sweep():
            while True:
                await asyncio.sleep(interval)
                self.cleanup_expired()

        self._cleanup_task = asyncio.create_task(sweep())
        return self._cleanup_task

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None


def create_cache_key(url: str) -> str:
    """
    Canonical cache key for a URL: scheme, host, path and query sorted by
    parameter name; the fragment is dropped.
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url

    params = sorted(parse_qsl(parts.query, keep_blank_values=True), key=lambda item: item[0])
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, urlencode(params), "")
    )
