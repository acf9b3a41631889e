import asyncio

import pytest


class FakeClock:
    """Monotonic clock driven by the test; sleep() advances it instead of waiting"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        # Still yield so other tasks get scheduled
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def no_service_keys(monkeypatch):
    # Keep real API keys from leaking into tests
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.delenv("FIRECRAWL_API_KEY", raising=False)
