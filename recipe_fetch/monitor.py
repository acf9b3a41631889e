"""Scraping performance tracking and reporting"""

import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from loguru import logger

from .config import MONITOR_MAX_ATTEMPTS
from .models import (
    DomainMetrics,
    ExtractionMethod,
    MethodStats,
    OverallMetrics,
    ScrapingAttempt,
)
from .site_config import extract_domain

TOP_DOMAINS_LIMIT = 10


def _method_table() -> Dict[str, MethodStats]:
    return {method.value: MethodStats() for method in ExtractionMethod}


def _count_errors(attempts: List[ScrapingAttempt]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for attempt in attempts:
        if attempt.finished and not attempt.success and attempt.error_category:
            counts[attempt.error_category] = counts.get(attempt.error_category, 0) + 1
    return dict(sorted(counts.items(), key=lambda item: item[1], reverse=True))


class ScrapingMonitor:
    """
    Bounded history of scraping attempts.

    Purely observational: nothing here feeds back into control flow.
    Oldest attempts are dropped once `max_attempts` is reached.
    """

    def __init__(
        self,
        max_attempts: int = MONITOR_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_attempts = max_attempts
        self._clock = clock
        self._attempts: Deque[ScrapingAttempt] = deque(maxlen=max_attempts)

    def __len__(self) -> int:
        return len(self._attempts)

    @property
    def attempts(self) -> List[ScrapingAttempt]:
        return list(self._attempts)

    def start_attempt(
        self,
        url: str,
        method: ExtractionMethod,
        domain: Optional[str] = None,
    ) -> ScrapingAttempt:
        """Begin tracking an attempt; finish it with record_success/record_failure"""
        attempt = ScrapingAttempt(
            url=url,
            domain=domain or extract_domain(url),
            method=ExtractionMethod(method).value,
            started_at=self._clock(),
        )
        self._attempts.append(attempt)
        logger.debug(f"📊 [Monitor] Started tracking: {attempt.domain} via {attempt.method}")
        return attempt

    def record_success(
        self,
        attempt: ScrapingAttempt,
        validation_score: Optional[int] = None,
        retry_count: int = 0,
        circuit_state: Optional[str] = None,
    ) -> None:
        attempt.success = True
        attempt.ended_at = self._clock()
        attempt.validation_score = validation_score
        attempt.retry_count = retry_count
        attempt.circuit_state = circuit_state

        score = validation_score if validation_score is not None else "N/A"
        logger.info(
            f"✅ [Monitor] Success: {attempt.domain} via {attempt.method} "
            f"({attempt.duration:.2f}s, score: {score})"
        )

    def record_failure(
        self,
        attempt: ScrapingAttempt,
        error: str,
        error_category: Optional[str] = None,
        retry_count: int = 0,
        circuit_state: Optional[str] = None,
        validation_score: Optional[int] = None,
    ) -> None:
        attempt.success = False
        attempt.ended_at = self._clock()
        attempt.error = error
        attempt.error_category = error_category
        attempt.retry_count = retry_count
        attempt.circuit_state = circuit_state
        attempt.validation_score = validation_score

        logger.warning(
            f"❌ [Monitor] Failure: {attempt.domain} via {attempt.method} "
            f"({error_category or 'unknown'}: {error[:100]})"
        )

    def domain_metrics(self, domain: str) -> Optional[DomainMetrics]:
        attempts = [a for a in self._attempts if a.domain == domain]
        if not attempts:
            return None

        successes = [a for a in attempts if a.success]
        failures = [a for a in attempts if a.finished and not a.success]
        durations = [a.duration for a in attempts if a.duration is not None]

        method_stats = _method_table()
        for attempt in attempts:
            stats = method_stats.setdefault(attempt.method, MethodStats())
            stats.attempts += 1
            if attempt.success:
                stats.successes += 1

        return DomainMetrics(
            domain=domain,
            total_attempts=len(attempts),
            success_count=len(successes),
            failure_count=len(attempts) - len(successes),
            success_rate=len(successes) / len(attempts),
            average_duration=sum(durations) / len(durations) if durations else 0.0,
            fastest_duration=min(durations) if durations else 0.0,
            slowest_duration=max(durations) if durations else 0.0,
            last_attempt=attempts[-1].started_at,
            last_success=successes[-1].started_at if successes else None,
            last_failure=failures[-1].started_at if failures else None,
            method_stats=method_stats,
            common_errors=_count_errors(attempts),
        )

    def overall_metrics(self) -> OverallMetrics:
        attempts = list(self._attempts)
        successes = sum(1 for a in attempts if a.success)
        durations = [a.duration for a in attempts if a.duration is not None]

        per_domain: Dict[str, MethodStats] = {}
        method_stats = _method_table()
        for attempt in attempts:
            domain_stats = per_domain.setdefault(attempt.domain, MethodStats())
            stats = method_stats.setdefault(attempt.method, MethodStats())
            domain_stats.attempts += 1
            stats.attempts += 1
            if attempt.success:
                domain_stats.successes += 1
                stats.successes += 1

        top_domains = sorted(
            (
                {"domain": domain, "attempts": stats.attempts, "success_rate": stats.rate}
                for domain, stats in per_domain.items()
            ),
            key=lambda item: item["attempts"],
            reverse=True,
        )[:TOP_DOMAINS_LIMIT]

        return OverallMetrics(
            total_attempts=len(attempts),
            success_count=successes,
            failure_count=len(attempts) - successes,
            success_rate=successes / len(attempts) if attempts else 0.0,
            average_duration=sum(durations) / len(durations) if durations else 0.0,
            top_domains=top_domains,
            method_stats=method_stats,
            common_errors=_count_errors(attempts),
        )

    def recent_failures(self, limit: int = 10) -> List[ScrapingAttempt]:
        """Most recent failed attempts, newest first"""
        failures = [a for a in self._attempts if a.finished and not a.success]
        return list(reversed(failures[-limit:]))

    def generate_report(self) -> str:
        overall = self.overall_metrics()
        lines = [
            "📊 Scraping Monitor Report",
            "=" * 50,
            "",
            "📈 Overall Statistics:",
            f"  Total Attempts: {overall.total_attempts}",
            f"  Successes: {overall.success_count}",
            f"  Failures: {overall.failure_count}",
            f"  Success Rate: {overall.success_rate * 100:.1f}%",
            f"  Average Duration: {overall.average_duration:.2f}s",
            "",
            "🔧 Method Performance:",
        ]
        for method, stats in overall.method_stats.items():
            lines.append(
                f"  {method:<10}: {stats.attempts} attempts, {stats.rate * 100:.1f}% success"
            )

        lines.extend(["", "🏆 Top Domains:"])
        for item in overall.top_domains:
            lines.append(
                f"  {item['domain']:<30}: {item['attempts']} attempts, "
                f"{item['success_rate'] * 100:.1f}% success"
            )

        if overall.common_errors:
            lines.extend(["", "⚠️ Common Errors:"])
            for category, count in overall.common_errors.items():
                lines.append(f"  {category:<20}: {count}")

        return "\n".join(lines)

    def clear(self) -> int:
        count = len(self._attempts)
        self._attempts.clear()
        logger.info(f"🗑️ [Monitor] Cleared {count} tracked attempts")
        return count


class PerformanceTimer:
    """Wall-clock timer with named checkpoints (seconds)"""

    def __init__(self, name: str, clock: Callable[[], float] = time.perf_counter):
        self.name = name
        self._clock = clock
        self.started_at = clock()
        self.checkpoints: Dict[str, float] = {}
        logger.debug(f"⏱️ [Timer] Started: {name}")

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def checkpoint(self, label: str) -> float:
        elapsed = self.elapsed()
        self.checkpoints[label] = elapsed
        logger.debug(f"⏱️ [Timer] {self.name} - {label}: {elapsed:.3f}s")
        return elapsed

    def end(self) -> float:
        duration = self.elapsed()
        logger.debug(f"⏱️ [Timer] {self.name} completed: {duration:.3f}s")
        return duration

    def summary(self) -> str:
        lines = [f"⏱️ Timer: {self.name}"]
        for label, elapsed in self.checkpoints.items():
            lines.append(f"  {label}: {elapsed:.3f}s")
        lines.append(f"  Total: {self.elapsed():.3f}s")
        return "\n".join(lines)
