"""Scrape orchestration: breaker -> rate limiter -> retry -> fetch, then extraction and fallback"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from .config import (
    DEFAULT_CACHE_TTL,
    ENHANCED_IMPERSONATE,
    MAX_QUEUE_WAIT,
    MONITOR_MAX_ATTEMPTS,
    STANDARD_IMPERSONATE,
)
from .dedup import RequestDeduplicator, create_cache_key
from .exceptions import (
    BlockedError,
    FetchTimeoutError,
    InvalidResponseError,
    ParseError,
    RecipeValidationError,
    ScrapeFailedError,
)
from .fallback import FallbackExtractionService, FirecrawlFallback
from .fetcher import CurlFetcher, Fetcher, build_fetch_headers, raise_for_status
from .instruction_cleaner import GroqInstructionCleaner, InstructionCleaner
from .logging_config import domain_logger
from .models import (
    ErrorCategory,
    ErrorClassification,
    ExtractionMethod,
    FetchResponse,
    RecipeRecord,
    RecoveryStrategy,
    SiteConfig,
    ValidationResult,
)
from .monitor import ScrapingMonitor
from .parser import FieldExtractor, RecipeDataParser, clean_text, parse_servings
from .rate_limiter import DomainRateLimiter, RateLimiterRegistry
from .recovery import ErrorRecoveryCoordinator, format_user_error_message, status_for_category
from .retry import classify_error, retry_with_backoff
from .site_config import SiteConfigRegistry, extract_domain
from .validator import find_block_indicators, should_fallback, validate_http_response, validate_recipe_data

# Strategies that end the method chain instead of moving to the next method
TERMINAL_STRATEGIES = (RecoveryStrategy.FAIL, RecoveryStrategy.CIRCUIT_BREAK)


class ScrapeService:
    """
    Owns every piece of mutable pipeline state: per-domain breakers and
    rate limiters, the dedup cache, the monitor and the error history.

    Create one per process (or per test) and pass it to RecipeScraper.
    """

    def __init__(
        self,
        site_registry: Optional[SiteConfigRegistry] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        max_queue_wait: float = MAX_QUEUE_WAIT,
        monitor_max_attempts: int = MONITOR_MAX_ATTEMPTS,
        rng: Optional[random.Random] = None,
    ):
        self.sites = site_registry or SiteConfigRegistry()
        self.clock = clock
        self.sleep = sleep
        self.rng = rng
        self.breakers = CircuitBreakerRegistry(clock=clock)
        self.limiters = RateLimiterRegistry(max_queue_wait=max_queue_wait, clock=clock, sleep=sleep)
        self.deduplicator = RequestDeduplicator("RecipeScraper", ttl=cache_ttl, clock=clock)
        self.monitor = ScrapingMonitor(max_attempts=monitor_max_attempts)
        self.recovery = ErrorRecoveryCoordinator()

    async def __aenter__(self) -> "ScrapeService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.close()
        return False

    def start(self) -> None:
        """Start the periodic cache sweep (needs a running loop)"""
        self.deduplicator.start_cleanup_task()

    async def close(self) -> None:
        """Stop the cache sweep and reject anything still queued"""
        await self.deduplicator.stop_cleanup_task()
        await self.limiters.close()
        logger.debug("Scrape service closed")

    def breaker_for(self, config: SiteConfig) -> CircuitBreaker:
        return self.breakers.get(config.domain, config.circuit_breaker_options)

    def limiter_for(self, config: SiteConfig) -> DomainRateLimiter:
        return self.limiters.get(config.domain, config.rate_limit)

    def stats(self) -> Dict[str, Any]:
        return {
            "circuit_breakers": {
                domain: snapshot.state.value for domain, snapshot in self.breakers.states().items()
            },
            "rate_limiters": {
                domain: {
                    "queue_length": status.queue_length,
                    "recent_requests": status.recent_requests,
                    "is_processing": status.is_processing,
                }
                for domain, status in self.limiters.statuses().items()
            },
            "cache": self.deduplicator.stats(),
            "domains_with_errors": self.recovery.domains_with_errors(),
        }


class RecipeScraper:
    """
    Fetch one recipe URL through the resilience pipeline.

    The method chain comes from the site's preferred method; the external
    fallback service is only part of the chain when it is configured.
    """

    def __init__(
        self,
        service: ScrapeService,
        fetcher: Optional[Fetcher] = None,
        extractor: Optional[FieldExtractor] = None,
        cleaner: Optional[InstructionCleaner] = None,
        fallback: Optional[FallbackExtractionService] = None,
    ):
        self.service = service
        self.fetcher = fetcher or CurlFetcher()
        self.extractor = extractor or RecipeDataParser()
        self.cleaner = cleaner if cleaner is not None else GroqInstructionCleaner()
        self.fallback = fallback if fallback is not None else FirecrawlFallback()

    def method_chain(self, config: SiteConfig) -> List[ExtractionMethod]:
        """
        Methods to try, in order, for a site.

        Standard sites escalate to the impersonating fetch before the fallback
        service; enhanced sites end with a plain fetch as a last resort.
        """
        standard, enhanced, fallback = (
            ExtractionMethod.STANDARD,
            ExtractionMethod.ENHANCED,
            ExtractionMethod.FALLBACK,
        )
        preferred = config.preferred_method

        if preferred == enhanced:
            chain = [enhanced, fallback, standard]
        elif preferred == fallback:
            chain = [fallback, standard, enhanced]
        else:
            chain = [standard, enhanced, fallback]

        if not self.fallback.available:
            chain.remove(fallback)
        return chain

    async def scrape(self, url: str, *, force_refresh: bool = False) -> RecipeRecord:
        """
        Scrape a recipe.

        Concurrent calls for the same canonical URL share one execution, and
        successful records are cached for the service's TTL.

        Raises:
            ScrapeFailedError: Every method failed (or the chain stopped early)
        """
        domain = extract_domain(url)
        if domain == "unknown":
            raise ScrapeFailedError(
                message="Invalid URL. Please provide a full recipe URL (https://...).",
                details=f"Could not determine a domain from {url!r}",
                category=ErrorCategory.VALIDATION_ERROR,
                domain=domain,
                url=url,
                status=400,
            )

        config = self.service.sites.resolve(domain)
        key = create_cache_key(url)
        domain_logger(domain).info(f"🌐 Scraping {url} ({config.difficulty.value} site)")

        return await self.service.deduplicator.execute(
            key,
            lambda: self._run_pipeline(url, config),
            force_refresh=force_refresh,
        )

    async def _run_pipeline(self, url: str, config: SiteConfig) -> RecipeRecord:
        chain = self.method_chain(config)
        log = domain_logger(config.domain)
        failures: List[Tuple[ExtractionMethod, ErrorClassification]] = []
        stopped_early = False

        for index, method in enumerate(chain):
            is_last = index == len(chain) - 1
            attempt = self.service.monitor.start_attempt(url, method, config.domain)
            retries: List[ErrorClassification] = []

            try:
                data, validation = await self._run_method(method, url, config, retries)
            except Exception as e:
                classification = classify_error(e, attempt=len(retries) + 1, url=url, domain=config.domain)
                if method != ExtractionMethod.FALLBACK:
                    # Only the site's own failures count towards its breaker
                    self._record_error(config, classification)
                self.service.monitor.record_failure(
                    attempt,
                    str(e),
                    classification.category.value,
                    retry_count=len(retries),
                    circuit_state=self._circuit_state(config),
                )
                failures.append((method, classification))
                log.warning(f"⚠️ {method.value} failed: {e}")

                if classification.recovery_strategy in TERMINAL_STRATEGIES:
                    stopped_early = True
                    break
                continue

            if should_fallback(validation) and (not is_last or not validation.is_valid):
                error = RecipeValidationError(
                    f"Low quality result from {method.value} (score {validation.score}): "
                    + "; ".join(validation.errors or validation.warnings),
                    validation,
                )
                classification = classify_error(error, url=url, domain=config.domain)
                self.service.monitor.record_failure(
                    attempt,
                    str(error),
                    classification.category.value,
                    retry_count=len(retries),
                    circuit_state=self._circuit_state(config),
                    validation_score=validation.score,
                )
                failures.append((method, classification))
                if not is_last:
                    log.info(f"🔄 {method.value} result too weak (score {validation.score}), trying {chain[index + 1].value}")
                continue

            self.service.monitor.record_success(
                attempt,
                validation_score=validation.score,
                retry_count=len(retries),
                circuit_state=self._circuit_state(config),
            )
            log.success(f"🎉 Extracted recipe via {method.value} (score {validation.score})")
            return self._build_record(data, url, config, method, validation)

        raise self._combined_failure(url, config, failures, stopped_early)

    async def _run_method(
        self,
        method: ExtractionMethod,
        url: str,
        config: SiteConfig,
        retries: List[ErrorClassification],
    ) -> Tuple[Dict[str, Any], ValidationResult]:
        if method == ExtractionMethod.FALLBACK:
            data = normalize_fallback_data(await self.fallback.extract(url))
        else:
            response = await self._fetch_protected(method, url, config, retries)
            data = await self._extract(response, url, config)

        return data, validate_recipe_data(data, config.domain)

    async def _fetch_protected(
        self,
        method: ExtractionMethod,
        url: str,
        config: SiteConfig,
        retries: List[ErrorClassification],
    ) -> FetchResponse:
        """breaker.call(limiter.call(retry_with_backoff(fetch_and_validate_http)))"""
        limiter = self.service.limiter_for(config)
        impersonate = ENHANCED_IMPERSONATE if method == ExtractionMethod.ENHANCED else STANDARD_IMPERSONATE

        async def on_retry(attempt: int, classification: ErrorClassification) -> None:
            retries.append(classification)
            if classification.category == ErrorCategory.RATE_LIMIT and classification.suggested_delay:
                await limiter.backoff(classification.suggested_delay)

        async def fetch_with_retry() -> FetchResponse:
            return await retry_with_backoff(
                self._fetch_and_validate_http,
                url,
                config,
                impersonate,
                max_attempts=config.retry_attempts,
                on_retry=on_retry,
                context={"url": url, "domain": config.domain},
                sleep=self.service.sleep,
                rng=self.service.rng,
            )

        async def rate_limited() -> FetchResponse:
            return await limiter.call(fetch_with_retry)

        if config.use_circuit_breaker:
            return await self.service.breaker_for(config).call(rate_limited)
        return await rate_limited()

    async def _fetch_and_validate_http(
        self, url: str, config: SiteConfig, impersonate: Optional[str]
    ) -> FetchResponse:
        headers = build_fetch_headers(config, self.service.rng)
        try:
            response = await asyncio.wait_for(
                self.fetcher.fetch(url, headers=headers, timeout=config.timeout, impersonate=impersonate),
                timeout=config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(
                f"Timeout fetching recipe from {config.domain} after {config.timeout:.0f} seconds",
                url=url,
            ) from e

        raise_for_status(response)

        validation = validate_http_response(response, config.domain)
        if not validation.is_valid:
            blocked = find_block_indicators(response.text)
            if blocked:
                raise BlockedError(
                    f"Blocked by {config.domain}: {', '.join(blocked)}",
                    status=response.status,
                    url=url,
                )
            raise InvalidResponseError(
                f"Page from {config.domain} failed validation (score {validation.score}): "
                + "; ".join(validation.errors),
                validation=validation,
                status=response.status,
                url=url,
            )

        for warning in validation.warnings:
            domain_logger(config.domain).debug(f"   {warning}")
        return response

    async def _extract(self, response: FetchResponse, url: str, config: SiteConfig) -> Dict[str, Any]:
        try:
            data = self.extractor.extract(response.text, url, config.domain)
        except Exception as e:
            raise ParseError(f"Failed to parse recipe from {config.domain}: {e}") from e

        instructions = data.get("instructions") or ""
        if instructions and self.cleaner is not None and self.cleaner.available:
            try:
                data["instructions"] = await self.cleaner.clean(instructions)
            except Exception as e:
                # Cleanup is optional; keep the raw text
                domain_logger(config.domain).warning(f"⚠️ Instruction cleanup failed, using raw instructions: {e}")
        return data

    def _record_error(self, config: SiteConfig, classification: ErrorClassification) -> None:
        recovery = self.service.recovery
        recovery.record_error(config.domain, classification)

        if classification.category == ErrorCategory.BLOCKED and recovery.should_circuit_break(config.domain):
            streak = recovery.blocked_streak
            domain_logger(config.domain).error(f"🚫 {config.domain} keeps blocking requests, opening circuit")
            self.service.breaker_for(config).trip(f"{streak} consecutive blocked responses")
            recovery.clear_history(config.domain)

    def _circuit_state(self, config: SiteConfig) -> Optional[str]:
        if config.domain not in self.service.breakers:
            return None
        return self.service.breaker_for(config).state.value

    @staticmethod
    def _build_record(
        data: Dict[str, Any],
        url: str,
        config: SiteConfig,
        method: ExtractionMethod,
        validation: ValidationResult,
    ) -> RecipeRecord:
        return RecipeRecord(
            title=data.get("title") or "",
            ingredients=list(data.get("ingredients") or []),
            instructions=data.get("instructions") or "",
            source_url=url,
            extraction_method=method.value,
            domain=config.domain,
            prep_time=data.get("prep_time") or None,
            cook_time=data.get("cook_time") or None,
            servings=data.get("servings") or None,
            image_url=data.get("image_url") or None,
            description=data.get("description") or None,
            validation_score=validation.score,
        )

    @staticmethod
    def _combined_failure(
        url: str,
        config: SiteConfig,
        failures: List[Tuple[ExtractionMethod, ErrorClassification]],
        stopped_early: bool,
    ) -> ScrapeFailedError:
        if not failures:
            return ScrapeFailedError(
                message=format_user_error_message(
                    ErrorClassification(ErrorCategory.UNKNOWN, "", False, RecoveryStrategy.FAIL)
                ),
                details="No extraction method was available",
                category=ErrorCategory.UNKNOWN,
                domain=config.domain,
                url=url,
                status=status_for_category(ErrorCategory.UNKNOWN),
            )

        # The error that stopped the chain, otherwise the primary method's error
        _, reported = failures[-1] if stopped_early else failures[0]

        if reported.recovery_strategy == RecoveryStrategy.CIRCUIT_BREAK and reported.error is not None:
            message = str(reported.error)
        else:
            message = format_user_error_message(reported)

        details = "; ".join(
            f"{method.value}: {classification.error or classification.message}"
            for method, classification in failures
        )
        domain_logger(config.domain).error(f"❌ All extraction methods failed for {url}: {details}")

        return ScrapeFailedError(
            message=message,
            details=details,
            category=reported.category,
            domain=config.domain,
            url=url,
            status=status_for_category(reported.category),
        )


def normalize_fallback_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a fallback-service answer into the extractor's field shapes"""
    ingredients = data.get("ingredients") or []
    if isinstance(ingredients, str):
        ingredients = ingredients.splitlines()
    if isinstance(ingredients, list):
        ingredients = [clean_text(item) for item in ingredients if clean_text(item)]

    instructions = data.get("instructions") or ""
    if isinstance(instructions, list):
        steps = [clean_text(step) for step in instructions]
        instructions = "\n\n".join(
            f"{i}. {step}" for i, step in enumerate((s for s in steps if s), 1)
        )

    return {
        "title": clean_text(data.get("title")),
        "ingredients": ingredients,
        "instructions": str(instructions).strip(),
        "prep_time": data.get("prep_time") or None,
        "cook_time": data.get("cook_time") or None,
        "servings": parse_servings(data.get("servings")),
        "image_url": data.get("image_url") or None,
        "description": data.get("description") or None,
    }
