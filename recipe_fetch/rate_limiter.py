"""Per-domain FIFO rate limiter with sliding window and minimum spacing"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from loguru import logger

from .config import MAX_QUEUE_WAIT
from .exceptions import QueueClearedError, QueueTimeoutError
from .models import RateLimitConfig, RateLimiterStatus


@dataclass
class QueuedRequest:
    func: Callable[..., Awaitable[Any]]
    args: tuple
    kwargs: dict
    future: asyncio.Future
    enqueued_at: float = field(default=0.0)


class DomainRateLimiter:
    """
    Rate limiter for a single domain.

    Requests are queued and dispatched one at a time by a single consumer
    task. Dispatches within any `window` never exceed `max_requests`, and
    consecutive dispatches are at least `min_delay` apart.
    """

    def __init__(
        self,
        domain: str,
        config: Optional[RateLimitConfig] = None,
        max_queue_wait: float = MAX_QUEUE_WAIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            domain: Domain name for logging
            config: Window size, request cap and minimum spacing
            max_queue_wait: Seconds a request may wait before being rejected
            clock: Monotonic time source in seconds
            sleep: Async sleep used for all waits
        """
        self.domain = domain
        self.config = config or RateLimitConfig()
        self.max_queue_wait = max_queue_wait
        self._clock = clock
        self._sleep = sleep
        self._queue: Deque[QueuedRequest] = deque()
        self._timestamps: Deque[float] = deque()
        self.last_dispatch_at: Optional[float] = None
        self.backoff_until: Optional[float] = None
        self._consumer: Optional[asyncio.Task] = None

        logger.debug(
            f"Rate limiter '{domain}' initialized: {self.config.max_requests} req / "
            f"{self.config.window:.0f}s, min delay {self.config.min_delay}s"
        )

    @property
    def is_processing(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Queue `func` and wait for the consumer to run it"""
        loop = asyncio.get_running_loop()
        request = QueuedRequest(
            func=func,
            args=args,
            kwargs=kwargs,
            future=loop.create_future(),
            enqueued_at=self._clock(),
        )
        self._queue.append(request)
        logger.debug(f"Queued request for {self.domain}. Queue length: {len(self._queue)}")

        if not self.is_processing:
            self._consumer = asyncio.create_task(self._process_queue())

        return await request.future

    async def backoff(self, duration: float) -> None:
        """Pause dispatching (e.g. when the server sent Retry-After)"""
        until = self._clock() + duration
        if self.backoff_until is None or until > self.backoff_until:
            self.backoff_until = until
        logger.warning(f"Rate limited by {self.domain}! Backing off for {duration:.1f}s")

    def _prune_window(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.config.window:
            self._timestamps.popleft()

    async def _process_queue(self) -> None:
        while self._queue:
            now = self._clock()

            if self.backoff_until is not None:
                if now < self.backoff_until:
                    await self._sleep(self.backoff_until - now)
                    continue
                self.backoff_until = None

            self._prune_window(now)

            if len(self._timestamps) >= self.config.max_requests:
                wait_time = self.config.window - (now - self._timestamps[0])
                logger.info(
                    f"Rate limit reached for {self.domain}. Waiting {wait_time:.1f}s..."
                )
                await self._sleep(wait_time)
                continue

            if self.last_dispatch_at is not None:
                since_last = now - self.last_dispatch_at
                if since_last < self.config.min_delay:
                    delay = self.config.min_delay - since_last
                    logger.debug(f"Enforcing minimum delay for {self.domain}: {delay:.2f}s")
                    await self._sleep(delay)
                    continue

            if not self._queue:
                break
            request = self._queue.popleft()

            if request.future.done():
                # Caller gave up (cancelled) while queued
                continue

            waited = self._clock() - request.enqueued_at
            if waited > self.max_queue_wait:
                logger.warning(
                    f"Request for {self.domain} expired after {waited:.0f}s in queue"
                )
                request.future.set_exception(QueueTimeoutError(self.domain, waited))
                continue

            self.last_dispatch_at = self._clock()
            self._timestamps.append(self.last_dispatch_at)
            logger.debug(
                f"Executing request for {self.domain}. Remaining in queue: {len(self._queue)}"
            )

            try:
                result = await request.func(*request.args, **request.kwargs)
            except asyncio.CancelledError:
                if not request.future.done():
                    request.future.cancel()
                raise
            except Exception as e:
                if not request.future.done():
                    request.future.set_exception(e)
            else:
                if not request.future.done():
                    request.future.set_result(result)

        logger.debug(f"Queue processing completed for {self.domain}")

    def status(self) -> RateLimiterStatus:
        now = self._clock()
        recent = sum(1 for ts in self._timestamps if now - ts < self.config.window)
        return RateLimiterStatus(
            queue_length=len(self._queue),
            recent_requests=recent,
            is_processing=self.is_processing,
        )

    def clear_queue(self) -> int:
        """Reject everything still waiting in the queue"""
        cleared = 0
        while self._queue:
            request = self._queue.popleft()
            if not request.future.done():
                request.future.set_exception(QueueClearedError(self.domain))
                cleared += 1
        if cleared:
            logger.warning(f"Cleared {cleared} requests from queue for {self.domain}")
        return cleared

    async def close(self) -> None:
        """Reject queued requests and stop the consumer"""
        self.clear_queue()
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None


class RateLimiterRegistry:
    """Holds one rate limiter per domain"""

    def __init__(
        self,
        max_queue_wait: float = MAX_QUEUE_WAIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_queue_wait = max_queue_wait
        self._clock = clock
        self._sleep = sleep
        self._limiters: Dict[str, DomainRateLimiter] = {}

    def get(self, domain: str, config: Optional[RateLimitConfig] = None) -> DomainRateLimiter:
        """Get or create the limiter for a domain"""
        limiter = self._limiters.get(domain)
        if limiter is None:
            limiter = DomainRateLimiter(
                domain,
                config,
                max_queue_wait=self.max_queue_wait,
                clock=self._clock,
                sleep=self._sleep,
            )
            self._limiters[domain] = limiter
        return limiter

    def statuses(self) -> Dict[str, RateLimiterStatus]:
        return {domain: limiter.status() for domain, limiter in self._limiters.items()}

    def clear_queue(self, domain: str) -> int:
        limiter = self._limiters.get(domain)
        return limiter.clear_queue() if limiter else 0

    def clear_all(self) -> int:
        return sum(limiter.clear_queue() for limiter in self._limiters.values())

    async def close(self) -> None:
        for limiter in self._limiters.values():
            await limiter.close()
