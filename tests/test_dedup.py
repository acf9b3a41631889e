import asyncio

import pytest

from recipe_fetch.dedup import RequestDeduplicator, create_cache_key


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_execution(clock):
    dedup = RequestDeduplicator(clock=clock)
    calls = []
    release = asyncio.Event()

    async def work():
        calls.append(1)
        await release.wait()
        return {"title": "Soup"}

    tasks = [asyncio.create_task(dedup.execute("k", work)) for _ in range(5)]
    await asyncio.sleep(0)
    assert dedup.is_pending("k")

    release.set()
    results = await asyncio.gather(*tasks)

    assert len(calls) == 1
    assert all(result is results[0] for result in results)
    assert not dedup.is_pending("k")


@pytest.mark.asyncio
async def test_concurrent_callers_share_failure(clock):
    dedup = RequestDeduplicator(clock=clock)
    calls = []
    release = asyncio.Event()

    async def work():
        calls.append(1)
        await release.wait()
        raise RuntimeError("upstream down")

    tasks = [asyncio.create_task(dedup.execute("k", work)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert len(calls) == 1
    assert all(isinstance(r, RuntimeError) for r in results)
    # Failures are not cached
    assert dedup.get_cached("k") is None


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_work(clock):
    dedup = RequestDeduplicator(clock=clock)
    calls = []
    release = asyncio.Event()

    async def work():
        calls.append(1)
        await release.wait()
        return "value"

    owner = asyncio.create_task(dedup.execute("k", work))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(dedup.execute("k", work))
    await asyncio.sleep(0)

    owner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await owner
    assert dedup.is_pending("k")

    release.set()
    assert await waiter == "value"
    assert len(calls) == 1
    assert dedup.get_cached("k") == "value"


@pytest.mark.asyncio
async def test_cache_hit_then_expiry(clock):
    dedup = RequestDeduplicator(ttl=60.0, clock=clock)
    calls = []

    async def work():
        calls.append(1)
        return len(calls)

    assert await dedup.execute("k", work) == 1
    assert await dedup.execute("k", work) == 1
    assert len(calls) == 1

    clock.advance(61)
    assert await dedup.execute("k", work) == 2


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache(clock):
    dedup = RequestDeduplicator(clock=clock)
    calls = []

    async def work():
        calls.append(1)
        return len(calls)

    await dedup.execute("k", work)
    assert await dedup.execute("k", work, force_refresh=True) == 2
    assert dedup.get_cached("k") == 2


@pytest.mark.asyncio
async def test_cleanup_and_invalidate(clock):
    dedup = RequestDeduplicator(ttl=10.0, clock=clock)

    async def work():
        return "v"

    await dedup.execute("a", work)
    await dedup.execute("b", work, ttl=100.0)

    clock.advance(11)
    assert dedup.cleanup_expired() == 1
    assert dedup.stats()["cache_keys"] == ["b"]

    assert dedup.invalidate("b") is True
    assert dedup.invalidate("b") is False
    assert dedup.stats()["cache_size"] == 0


@pytest.mark.asyncio
async def test_cleanup_task_lifecycle(clock):
    dedup = RequestDeduplicator(clock=clock)
    task = dedup.start_cleanup_task(interval=3600)
    assert dedup.start_cleanup_task() is task

    await dedup.stop_cleanup_task()
    assert task.cancelled()


class TestCreateCacheKey:
    def test_query_order_is_ignored(self):
        assert create_cache_key("https://a.com/r?b=2&a=1") == create_cache_key(
            "https://a.com/r?a=1&b=2"
        )

    def test_fragment_dropped_and_host_lowered(self):
        assert create_cache_key("https://A.com/r#step-2") == "https://a.com/r"

    def test_unparseable_url_returned_as_is(self):
        assert create_cache_key("not a url") == "not a url"
