"""Circuit breaker pattern implementation"""

import time
from typing import Callable, Dict, Optional

from loguru import logger

from .exceptions import CircuitOpenError
from .models import CircuitBreakerOptions, CircuitBreakerSnapshot, CircuitState


class CircuitBreaker:
    """
    Per-domain circuit breaker to stop hammering failing sites.
    Opens after threshold failures, half-opens after timeout,
    closes after enough consecutive half-open successes.
    """

    def __init__(
        self,
        domain: str,
        options: Optional[CircuitBreakerOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            domain: Domain name, used for logging and error messages
            options: Thresholds and timeouts
            clock: Monotonic time source in seconds
        """
        self.domain = domain
        self.options = options or CircuitBreakerOptions()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt_at = clock()
        self.last_failure_at: Optional[float] = None
        self.last_success_at: Optional[float] = None
        self.open_reason: Optional[str] = None

        logger.debug(
            f"Circuit breaker '{domain}' initialized: "
            f"threshold={self.options.failure_threshold}, timeout={self.options.timeout}s"
        )

    @property
    def state(self) -> CircuitState:
        self._update_state()
        return self._state

    async def call(self, func, *args, **kwargs):
        """Execute function with circuit breaker protection"""
        self._update_state()

        if self._state == CircuitState.OPEN:
            remaining = self.next_attempt_at - self._clock()
            raise CircuitOpenError(self.domain, remaining, self.failure_count, self.open_reason)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        self.last_success_at = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self.success_count += 1
            logger.info(
                f"Circuit '{self.domain}' half-open success "
                f"{self.success_count}/{self.options.success_threshold}"
            )
            if self.success_count >= self.options.success_threshold:
                self._close()
        elif self.failure_count > 0:
            logger.debug(f"Circuit '{self.domain}' resetting failure count after success")
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.last_failure_at = self._clock()
        self.failure_count += 1

        if self._state == CircuitState.HALF_OPEN:
            # Single failure in HALF_OPEN reopens circuit
            logger.warning(f"Circuit '{self.domain}' trial request failed")
            self._open()
        elif self.failure_count >= self.options.failure_threshold:
            self._open()
        else:
            logger.warning(
                f"Circuit '{self.domain}' failure "
                f"{self.failure_count}/{self.options.failure_threshold}"
            )

    def _update_state(self) -> None:
        now = self._clock()

        if self._state == CircuitState.CLOSED:
            if (
                self.failure_count > 0
                and self.last_failure_at is not None
                and now - self.last_failure_at > self.options.reset_timeout
            ):
                logger.debug(f"Circuit '{self.domain}' auto-resetting failure count")
                self.failure_count = 0
        elif self._state == CircuitState.OPEN:
            if now >= self.next_attempt_at:
                logger.info(
                    f"Circuit '{self.domain}' transitioning to HALF_OPEN (timeout expired)"
                )
                self._state = CircuitState.HALF_OPEN
                self.success_count = 0

    def _open(self, reason: Optional[str] = None) -> None:
        self._state = CircuitState.OPEN
        self.open_reason = reason
        self.success_count = 0
        self.next_attempt_at = self._clock() + self.options.timeout
        logger.error(
            f"Circuit '{self.domain}' OPENING: {reason or f'{self.failure_count} failures'}, "
            f"retry in {self.options.timeout:.0f}s"
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        logger.success(f"Circuit '{self.domain}' recovered, closing")

    def trip(self, reason: Optional[str] = None) -> None:
        """Force the circuit open (e.g. after a streak of bot blocks)"""
        if self._state != CircuitState.OPEN:
            self._open(reason or "Opened manually")

    def reset(self) -> None:
        """Force the circuit closed and clear counters"""
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.open_reason = None
        self.next_attempt_at = self._clock()
        logger.info(f"Circuit '{self.domain}' manually reset")

    def snapshot(self) -> CircuitBreakerSnapshot:
        self._update_state()
        return CircuitBreakerSnapshot(
            state=self._state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            next_attempt_at=self.next_attempt_at,
            last_failure_at=self.last_failure_at,
            last_success_at=self.last_success_at,
        )


class CircuitBreakerRegistry:
    """Holds one breaker per domain"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(
        self, domain: str, options: Optional[CircuitBreakerOptions] = None
    ) -> CircuitBreaker:
        """Get or create the breaker for a domain"""
        breaker = self._breakers.get(domain)
        if breaker is None:
            breaker = CircuitBreaker(domain, options, clock=self._clock)
            self._breakers[domain] = breaker
        return breaker

    def states(self) -> Dict[str, CircuitBreakerSnapshot]:
        return {domain: breaker.snapshot() for domain, breaker in self._breakers.items()}

    def reset(self, domain: str) -> None:
        breaker = self._breakers.get(domain)
        if breaker:
            breaker.reset()

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def __contains__(self, domain: str) -> bool:
        return domain in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
