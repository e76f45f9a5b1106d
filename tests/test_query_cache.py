from __future__ import annotations

import asyncio

import pytest

from elementhooks.cache import keys
from elementhooks.cache.persistence import CachePersister
from elementhooks.cache.query_cache import QueryCache
from elementhooks.cache.retry import backoff_delay, retry_transient
from elementhooks.core.exceptions import NotFoundError, PermissionDeniedError, TransportError
from elementhooks.remote.models import WebhookAssignment


class CountingFetcher:
    def __init__(self, *values) -> None:
        self.values = list(values)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values[min(self.calls, len(self.values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_refetching(cache):
    fetcher = CountingFetcher("v1", "v2")

    assert await cache.fetch(("webhooks", "detail", "a"), fetcher, "dynamic") == "v1"
    assert await cache.fetch(("webhooks", "detail", "a"), fetcher, "dynamic") == "v1"
    assert fetcher.calls == 1
    assert cache.stats()["hits"] == 1


@pytest.mark.asyncio
async def test_stale_entry_is_served_while_one_background_refresh_runs(cache, clock):
    fetcher = CountingFetcher("v1", "v2")
    await cache.fetch(("webhooks", "detail", "a"), fetcher, "dynamic")
    clock.advance(5 * 60 + 1)

    first = await cache.fetch(("webhooks", "detail", "a"), fetcher, "dynamic")
    second = await cache.fetch(("webhooks", "detail", "a"), fetcher, "dynamic")
    await cache.drain()

    assert (first, second) == ("v1", "v1")
    assert fetcher.calls == 2
    assert cache.peek(("webhooks", "detail", "a")) == "v2"


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_request(cache):
    release = asyncio.Event()
    calls = 0

    async def slow():
        nonlocal calls
        calls += 1
        await release.wait()
        return ["row"]

    first = asyncio.ensure_future(cache.fetch(keys.by_page("/home"), slow))
    second = asyncio.ensure_future(cache.fetch(keys.by_page("/home"), slow))
    await asyncio.sleep(0)
    release.set()

    assert await first == ["row"]
    assert await second == ["row"]
    assert calls == 1


@pytest.mark.asyncio
async def test_invalidated_entry_is_refetched_on_next_read(cache):
    fetcher = CountingFetcher({"page": 1}, {"page": 2})
    key = keys.webhook_list({"feature_slug": "admin"})
    await cache.fetch(key, fetcher)

    assert cache.invalidate(keys.all_lists()) == 1
    assert cache.entry(key).invalidated
    assert await cache.fetch(key, fetcher) == {"page": 2}
    assert not cache.entry(key).invalidated


@pytest.mark.asyncio
async def test_transient_failures_are_retried_and_others_are_not(cache):
    flaky = CountingFetcher(TransportError("reset"), TransportError("reset"), "ok")
    missing = CountingFetcher(NotFoundError("gone"))

    assert await cache.fetch(("webhooks", "detail", "flaky"), flaky) == "ok"
    assert flaky.calls == 3
    with pytest.raises(NotFoundError):
        await cache.fetch(("webhooks", "detail", "missing"), missing)
    assert missing.calls == 1
    assert cache.stats()["errors"] == 1


@pytest.mark.asyncio
async def test_retry_transient_uses_capped_exponential_backoff():
    delays: list[float] = []

    async def record(delay: float) -> None:
        delays.append(delay)

    always_down = CountingFetcher(TransportError("down"))

    with pytest.raises(TransportError):
        await retry_transient(always_down, max_retries=3, base_delay=1.0, max_delay=3.0, sleep=record)

    assert delays == [1.0, 2.0, 3.0]
    assert always_down.calls == 4
    assert backoff_delay(10, 1.0, 30.0) == 30.0


@pytest.mark.asyncio
async def test_permission_errors_fail_fast():
    denied = CountingFetcher(PermissionDeniedError("no"))

    with pytest.raises(PermissionDeniedError):
        await retry_transient(denied, sleep=lambda _delay: asyncio.sleep(0))
    assert denied.calls == 1


@pytest.mark.asyncio
async def test_removed_key_is_not_resurrected_by_an_in_flight_fetch(cache):
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "late"

    pending = asyncio.ensure_future(cache.fetch(keys.webhook_detail("x"), slow))
    await asyncio.sleep(0)
    cache.remove(keys.webhook_detail("x"))
    release.set()

    assert await pending == "late"
    assert cache.entry(keys.webhook_detail("x")) is None


@pytest.mark.asyncio
async def test_garbage_collection_drops_unused_entries(cache, clock):
    cache.set(keys.webhook_detail("old"), "stale", "realtime")
    cache.set(keys.webhook_detail("kept"), "value", "static")
    clock.advance(10 * 60 + 1)

    assert cache.garbage_collect() == 1
    assert cache.keys() == [keys.webhook_detail("kept")]


@pytest.mark.asyncio
async def test_refresh_due_refetches_realtime_entries(cache, clock):
    fetcher = CountingFetcher("healthy", "critical")
    await cache.fetch(keys.element_status("id_save", "/dashboard"), fetcher, "realtime")
    clock.advance(31)

    assert await cache.refresh_due() == 1
    assert cache.peek(keys.element_status("id_save", "/dashboard")) == "critical"


def test_unknown_tier_is_rejected(cache):
    with pytest.raises(ValueError):
        cache.set(("webhooks",), 1, "eternal")


@pytest.mark.asyncio
async def test_persister_round_trips_webhook_queries_only(cache, clock, tmp_path, app_config):
    record = WebhookAssignment(
        id="wh-1",
        organization_id="org-1",
        feature_slug="admin",
        page_path="/admin",
        element_id="id_save",
        endpoint_url="https://hooks.example.com/save",
    )
    cache.set(keys.webhook_detail("wh-1"), record, "semi_static")
    cache.set(keys.executions("wh-1"), [{"status": "ok"}], "realtime")
    cache.set(keys.element_status("id_save", "/dashboard"), "healthy", "realtime")
    persister = CachePersister(tmp_path / "cache.bin", max_age_seconds=60)

    assert persister.save(cache) == 1

    restored = QueryCache(app_config.cache, clock=clock)
    assert persister.restore(restored) == 1
    assert restored.keys() == [keys.webhook_detail("wh-1")]
    assert restored.peek(keys.webhook_detail("wh-1"))["element_id"] == "id_save"

    clock.advance(61)
    assert persister.restore(QueryCache(app_config.cache, clock=clock)) == 0
    assert not (tmp_path / "cache.bin").exists()
