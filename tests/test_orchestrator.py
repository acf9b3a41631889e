import asyncio
import random

import httpx
import orjson
import pytest
import pytest_asyncio

from recipe_fetch.exceptions import ScrapeFailedError
from recipe_fetch.models import CircuitState, ErrorCategory, FetchResponse
from recipe_fetch.orchestrator import RecipeScraper, ScrapeService, normalize_fallback_data
from recipe_fetch.site_config import SiteConfigRegistry

RECIPE_JSON_LD = {
    "@context": "https://schema.org",
    "@type": "Recipe",
    "name": "Weeknight Chili",
    "recipeIngredient": ["1 lb beef", "1 can beans", "1 onion", "2 tbsp chili powder"],
    "recipeInstructions": [
        {"@type": "HowToStep", "text": "Brown the beef with the onion."},
        {"@type": "HowToStep", "text": "Add beans and chili powder, simmer 30 minutes."},
    ],
    "prepTime": "PT10M",
    "cookTime": "PT40M",
    "recipeYield": "6",
    "image": "https://example.com/chili.jpg",
    "description": "A quick chili.",
}

RECIPE_PAGE = (
    "<html><head><title>Weeknight Chili</title>"
    "<script type=\"application/ld+json\">" + orjson.dumps(RECIPE_JSON_LD).decode() + "</script>"
    "</head><body><h1>Weeknight Chili</h1>"
    "<p>" + "This recipe feeds a crowd on a busy night. " * 10 + "</p>"
    "</body></html>"
)

FULL_RECIPE = {
    "title": "Beef Wellington",
    "ingredients": ["2 lb beef tenderloin", "1 sheet puff pastry", "8 oz mushrooms"],
    "instructions": ["Sear the beef on all sides.", "Wrap in duxelles and pastry, then bake."],
    "prep_time": "30m",
    "cook_time": "45m",
    "servings": "6 servings",
    "image_url": "https://example.com/wellington.jpg",
    "description": "A showstopper.",
}


class FakeFetcher:
    """Returns queued responses (or raises queued errors); repeats the last one"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def fetch(self, url, *, headers, timeout, impersonate=None):
        self.calls.append({"url": url, "impersonate": impersonate, "headers": headers})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeExtractor:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error

    def extract(self, html, url, domain):
        if self.error:
            raise self.error
        return dict(self.data)


class FakeFallback:
    def __init__(self, data=None, available=True, error=None):
        self.data = data
        self.available = available
        self.error = error
        self.calls = []

    async def extract(self, url):
        self.calls.append(url)
        if self.error:
            raise self.error
        return dict(self.data)


class FakeCleaner:
    def __init__(self, result=None, error=None, available=True):
        self.result = result
        self.error = error
        self.available = available

    async def clean(self, instructions):
        if self.error:
            raise self.error
        return self.result


def page(url="https://example.com/chili", status=200, text=RECIPE_PAGE, headers=None):
    return FetchResponse(
        url=url,
        status=status,
        headers=headers or {"content-type": "text/html; charset=utf-8"},
        text=text,
    )


@pytest_asyncio.fixture
async def service(clock):
    svc = ScrapeService(clock=clock, sleep=clock.sleep, rng=random.Random(7))
    yield svc
    await svc.close()


def scraper_for(service, fetcher, **kwargs):
    kwargs.setdefault("fallback", FakeFallback(available=False))
    kwargs.setdefault("cleaner", FakeCleaner(available=False))
    return RecipeScraper(service, fetcher=fetcher, **kwargs)


@pytest.mark.asyncio
async def test_standard_extraction_success(service):
    fetcher = FakeFetcher(page())
    scraper = scraper_for(service, fetcher)

    record = await scraper.scrape("https://www.example.com/chili")

    assert record.title == "Weeknight Chili"
    assert record.extraction_method == "standard"
    assert record.domain == "example.com"
    assert record.servings == 6
    assert record.validation_score == 100
    assert fetcher.calls[0]["impersonate"] is None
    assert "User-Agent" in fetcher.calls[0]["headers"]

    metrics = service.monitor.domain_metrics("example.com")
    assert metrics.success_count == 1
    assert metrics.method_stats["standard"].successes == 1


@pytest.mark.asyncio
async def test_weak_primary_result_falls_back(service):
    fetcher = FakeFetcher(page(url="https://www.foodnetwork.com/recipes/wellington"))
    weak = FakeExtractor({"title": "foodnetwork.com Recipe", "ingredients": [], "instructions": ""})
    fallback = FakeFallback(FULL_RECIPE)
    scraper = scraper_for(service, fetcher, extractor=weak, fallback=fallback)

    record = await scraper.scrape("https://www.foodnetwork.com/recipes/wellington")

    assert record.extraction_method == "fallback"
    assert record.title == "Beef Wellington"
    assert record.servings == 6
    assert record.instructions.startswith("1. Sear the beef")
    # Hard site: primary method is the browser-impersonating fetch
    assert fetcher.calls[0]["impersonate"] == "chrome"
    assert fallback.calls == ["https://www.foodnetwork.com/recipes/wellington"]

    metrics = service.monitor.domain_metrics("foodnetwork.com")
    assert metrics.method_stats["enhanced"].attempts == 1
    assert metrics.method_stats["enhanced"].successes == 0
    assert metrics.method_stats["fallback"].successes == 1


@pytest.mark.asyncio
async def test_fallback_preferred_site_tries_fallback_first(service):
    fetcher = FakeFetcher(page())
    fallback = FakeFallback(FULL_RECIPE)
    scraper = scraper_for(service, fetcher, fallback=fallback)

    record = await scraper.scrape("https://www.hellofresh.com/recipes/wellington")

    assert record.extraction_method == "fallback"
    assert fetcher.calls == []


INCOMPLETE = {"title": "", "ingredients": [], "instructions": ""}


def fallback_auth_error():
    request = httpx.Request("POST", "https://api.firecrawl.dev/v1/scrape")
    return httpx.HTTPStatusError(
        "401 Unauthorized", request=request, response=httpx.Response(401, request=request)
    )


@pytest.mark.asyncio
async def test_fallback_failure_reports_every_method(service):
    fetcher = FakeFetcher(page(url="https://www.foodnetwork.com/recipes/wellington"))
    fallback = FakeFallback(error=RuntimeError("Firecrawl extraction returned no data"))
    scraper = scraper_for(service, fetcher, extractor=FakeExtractor(INCOMPLETE), fallback=fallback)

    with pytest.raises(ScrapeFailedError) as exc_info:
        await scraper.scrape("https://www.foodnetwork.com/recipes/wellington")

    error = exc_info.value
    assert error.category == ErrorCategory.VALIDATION_ERROR
    assert error.status == 422
    assert "enhanced:" in error.details
    assert "fallback: Firecrawl extraction returned no data" in error.details
    assert "standard:" in error.details
    assert fallback.calls == ["https://www.foodnetwork.com/recipes/wellington"]

    metrics = service.monitor.domain_metrics("foodnetwork.com")
    assert metrics.method_stats["fallback"].attempts == 1
    assert metrics.method_stats["fallback"].successes == 0
    failed = [a for a in service.monitor.attempts if a.method == "fallback"]
    assert failed[0].finished and not failed[0].success


@pytest.mark.asyncio
async def test_fallback_service_errors_do_not_open_site_circuit(service):
    fetcher = FakeFetcher(page())
    fallback = FakeFallback(error=fallback_auth_error())
    scraper = scraper_for(service, fetcher, extractor=FakeExtractor(INCOMPLETE), fallback=fallback)

    for i in range(6):
        with pytest.raises(ScrapeFailedError) as exc_info:
            await scraper.scrape(f"https://example.com/r{i}")
        assert exc_info.value.status != 503
        assert "fallback:" in exc_info.value.details

    assert service.breakers.get("example.com").state == CircuitState.CLOSED
    assert service.recovery.error_stats("example.com")["total_errors"] == 0
    assert len(fallback.calls) == 6
    # Both site fetches ran on every scrape
    assert len(fetcher.calls) == 12



def test_method_chain_without_fallback():
    service = ScrapeService()
    scraper = scraper_for(service, FakeFetcher(page()))
    sites = service.sites

    def chain(domain):
        return [m.value for m in scraper.method_chain(sites.resolve(domain))]

    assert chain("example.com") == ["standard", "enhanced"]
    assert chain("foodnetwork.com") == ["enhanced", "standard"]
    assert chain("hellofresh.com") == ["standard", "enhanced"]

    scraper.fallback = FakeFallback(FULL_RECIPE)
    assert chain("example.com") == ["standard", "enhanced", "fallback"]
    assert chain("foodnetwork.com") == ["enhanced", "fallback", "standard"]
    assert chain("hellofresh.com") == ["fallback", "standard", "enhanced"]


@pytest.mark.asyncio
async def test_weak_but_valid_last_method_is_accepted(service):
    weak = FakeExtractor(
        {
            "title": "example.com Recipe",
            "ingredients": ["salt"],
            "instructions": "1. Season the dish generously and serve it right away while hot.",
        }
    )
    fetcher = FakeFetcher(page())
    scraper = scraper_for(service, fetcher, extractor=weak)

    record = await scraper.scrape("https://example.com/mystery")

    # The weak standard result escalates; the last method's weak result is kept
    assert record.extraction_method == "enhanced"
    assert record.validation_score == 45
    assert [call["impersonate"] for call in fetcher.calls] == [None, "chrome"]


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures(service):
    fetcher = FakeFetcher(page(status=404))
    scraper = scraper_for(service, fetcher)

    for i in range(5):
        with pytest.raises(ScrapeFailedError) as exc_info:
            await scraper.scrape(f"https://example.com/missing-{i}")
        assert exc_info.value.status == 404
        assert exc_info.value.category == ErrorCategory.NOT_FOUND

    assert service.breakers.get("example.com").state == CircuitState.OPEN

    with pytest.raises(ScrapeFailedError) as exc_info:
        await scraper.scrape("https://example.com/missing-6")

    error = exc_info.value
    assert error.status == 503
    assert "example.com" in error.message
    assert "Retry in" in error.message
    assert len(fetcher.calls) == 5


@pytest.mark.asyncio
async def test_blocked_streak_trips_circuit(clock):
    sites = SiteConfigRegistry(overrides={"example.com": {"circuit_breaker_threshold": 100}})
    async with ScrapeService(sites, clock=clock, sleep=clock.sleep) as service:
        fetcher = FakeFetcher(page(status=403))
        scraper = scraper_for(service, fetcher)

        # Each scrape is blocked on the standard and then the enhanced fetch
        for i in range(2):
            with pytest.raises(ScrapeFailedError) as exc_info:
                await scraper.scrape(f"https://example.com/r{i}")
            assert exc_info.value.category == ErrorCategory.BLOCKED
            assert exc_info.value.status == 403

        # The fifth block opens the circuit before the enhanced fetch runs
        with pytest.raises(ScrapeFailedError) as exc_info:
            await scraper.scrape("https://example.com/r2")
        assert exc_info.value.status == 503
        assert "5 consecutive blocked responses" in exc_info.value.message
        assert "Too many failures" not in exc_info.value.message

        assert len(fetcher.calls) == 5
        assert service.breakers.get("example.com").state == CircuitState.OPEN
        errors = service.recovery.error_stats("example.com")["errors_by_category"]
        assert "blocked" not in errors

        with pytest.raises(ScrapeFailedError) as exc_info:
            await scraper.scrape("https://example.com/r3")
        assert exc_info.value.status == 503
        assert len(fetcher.calls) == 5


@pytest.mark.asyncio
async def test_block_page_with_200_is_treated_as_blocked(service):
    block_page = "<html><body>Attention Required! Please verify you are a human.</body></html>"
    scraper = scraper_for(service, FakeFetcher(page(text=block_page)))

    with pytest.raises(ScrapeFailedError) as exc_info:
        await scraper.scrape("https://example.com/chili")

    assert exc_info.value.category == ErrorCategory.BLOCKED
    assert "standard:" in exc_info.value.details


@pytest.mark.asyncio
async def test_transient_server_errors_are_retried(service, clock):
    fetcher = FakeFetcher(page(status=503), page(status=502), page())
    scraper = scraper_for(service, fetcher)

    record = await scraper.scrape("https://example.com/chili")

    assert record.title == "Weeknight Chili"
    assert len(fetcher.calls) == 3
    attempt = service.monitor.attempts[-1]
    assert attempt.success
    assert attempt.retry_count == 2
    assert any(s >= 5.0 for s in clock.sleeps)


@pytest.mark.asyncio
async def test_rate_limit_response_backs_off_limiter(service):
    limited = page(status=429, headers={"retry-after": "20"})
    fetcher = FakeFetcher(limited, page())
    scraper = scraper_for(service, fetcher)

    record = await scraper.scrape("https://example.com/chili")

    assert record.extraction_method == "standard"
    assert service.limiters.get("example.com").backoff_until is not None


@pytest.mark.asyncio
async def test_fetch_timeout(clock):
    sites = SiteConfigRegistry(overrides={"example.com": {"timeout": 0.01, "retry_attempts": 1}})
    async with ScrapeService(sites, clock=clock, sleep=clock.sleep) as service:

        class HangingFetcher:
            calls = 0

            async def fetch(self, url, *, headers, timeout, impersonate=None):
                HangingFetcher.calls += 1
                await asyncio.Event().wait()

        scraper = scraper_for(service, HangingFetcher())
        with pytest.raises(ScrapeFailedError) as exc_info:
            await scraper.scrape("https://example.com/slow")

    assert exc_info.value.category == ErrorCategory.TIMEOUT
    assert exc_info.value.status == 504
    assert HangingFetcher.calls == 2
    assert "standard:" in exc_info.value.details
    assert "enhanced:" in exc_info.value.details


@pytest.mark.asyncio
async def test_extractor_crash_is_parse_error(service):
    scraper = scraper_for(
        service, FakeFetcher(page()), extractor=FakeExtractor(error=KeyError("name"))
    )

    with pytest.raises(ScrapeFailedError) as exc_info:
        await scraper.scrape("https://example.com/chili")

    assert exc_info.value.category == ErrorCategory.PARSE_ERROR
    assert exc_info.value.status == 422


@pytest.mark.asyncio
async def test_instruction_cleaner_applied_and_failure_tolerated(service):
    cleaned = "1. Brown the beef.\n\n2. Simmer with beans for 30 minutes until thick."
    scraper = scraper_for(service, FakeFetcher(page()), cleaner=FakeCleaner(result=cleaned))
    record = await scraper.scrape("https://example.com/chili")
    assert record.instructions == cleaned

    broken = scraper_for(
        service, FakeFetcher(page()), cleaner=FakeCleaner(error=ValueError("bad payload"))
    )
    record = await broken.scrape("https://example.com/other-chili")
    assert record.instructions.startswith("1. Brown the beef with the onion.")


@pytest.mark.asyncio
async def test_concurrent_scrapes_share_one_fetch(service):
    fetcher = FakeFetcher(page())
    scraper = scraper_for(service, fetcher)

    first, second = await asyncio.gather(
        scraper.scrape("https://example.com/chili?b=2&a=1"),
        scraper.scrape("https://example.com/chili?a=1&b=2#steps"),
    )

    assert first is second
    assert len(fetcher.calls) == 1

    again = await scraper.scrape("https://example.com/chili?a=1&b=2")
    assert again is first
    assert len(fetcher.calls) == 1

    await scraper.scrape("https://example.com/chili?a=1&b=2", force_refresh=True)
    assert len(fetcher.calls) == 2


@pytest.mark.asyncio
async def test_invalid_url_rejected(service):
    scraper = scraper_for(service, FakeFetcher(page()))

    with pytest.raises(ScrapeFailedError) as exc_info:
        await scraper.scrape("not a url")

    assert exc_info.value.status == 400
    assert exc_info.value.category == ErrorCategory.VALIDATION_ERROR


def test_normalize_fallback_data():
    data = normalize_fallback_data(
        {"title": " <b>Pie</b> ", "ingredients": "flour\n\nbutter", "instructions": ["Mix.", "", "Bake."]}
    )
    assert data["title"] == "Pie"
    assert data["ingredients"] == ["flour", "butter"]
    assert data["instructions"] == "1. Mix.\n\n2. Bake."
    assert data["servings"] is None


def test_service_stats():
    service = ScrapeService()
    assert service.stats()["circuit_breakers"] == {}
