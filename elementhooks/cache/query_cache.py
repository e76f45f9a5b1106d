from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from elementhooks.cache.keys import QueryKey, is_prefix
from elementhooks.cache.retry import retry_transient
from elementhooks.config.schema import CacheConfig, CacheTier
from elementhooks.core.diagnostics import Diagnostics, LoggingDiagnostics
from elementhooks.logging.logger import get_logger

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class CacheEntry:
    key: QueryKey
    data: Any
    tier: str
    updated_at: float
    last_access: float
    invalidated: bool = False
    fetcher: Fetcher | None = None
    error: str | None = None


class QueryCache:
    """Keyed query cache with tiered freshness and stale-while-revalidate reads.

    A fresh entry is returned as-is. A stale entry is returned immediately
    while one background refresh runs. A missing or invalidated entry is
    fetched before returning. Concurrent fetches of one key share a request.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.config = config or CacheConfig()
        self.clock = clock
        self.sleep = sleep
        self.diagnostics = diagnostics or LoggingDiagnostics("cache")
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._inflight: dict[QueryKey, asyncio.Task] = {}
        self._generations: dict[QueryKey, int] = {}
        self._background: set[asyncio.Task] = set()
        self._auto_refresh: asyncio.Task | None = None
        self._counters = {
            "hits": 0,
            "stale_hits": 0,
            "misses": 0,
            "fetches": 0,
            "errors": 0,
            "invalidations": 0,
            "collected": 0,
        }

    def tier(self, name: str) -> CacheTier:
        try:
            return self.config.tiers[name]
        except KeyError as exc:
            raise ValueError(f"Unknown cache tier: {name}") from exc

    async def fetch(self, key: QueryKey, fetcher: Fetcher, tier: str = "dynamic") -> Any:
        key = tuple(key)
        settings = self.tier(tier)
        entry = self._entries.get(key)
        now = self.clock()

        if entry is not None and not entry.invalidated:
            entry.last_access = now
            entry.fetcher = fetcher
            entry.tier = tier
            if now - entry.updated_at < settings.stale_seconds:
                self._counters["hits"] += 1
                return entry.data
            self._counters["stale_hits"] += 1
            self._schedule_refresh(key, fetcher, tier)
            return entry.data

        self._counters["misses"] += 1
        task = self._inflight.get(key)
        if task is None:
            task = self._start_load(key, fetcher, tier)
        return await asyncio.shield(task)

    def set(self, key: QueryKey, data: Any, tier: str = "dynamic", *, fetcher: Fetcher | None = None) -> None:
        key = tuple(key)
        self.tier(tier)
        self._bump(key)
        self._inflight.pop(key, None)
        previous = self._entries.get(key)
        now = self.clock()
        self._entries[key] = CacheEntry(
            key=key,
            data=data,
            tier=tier,
            updated_at=now,
            last_access=now,
            fetcher=fetcher or (previous.fetcher if previous else None),
        )

    def peek(self, key: QueryKey) -> Any | None:
        entry = self._entries.get(tuple(key))
        return None if entry is None else entry.data

    def entry(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(tuple(key))

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def invalidate(self, prefix: QueryKey) -> int:
        """Marks matching entries so the next read refetches them."""

        matched = self._matching(prefix)
        for key in matched:
            self._entries[key].invalidated = True
            self._bump(key)
        for key in [key for key in self._inflight if is_prefix(tuple(prefix), key)]:
            self._inflight.pop(key, None)
            self._bump(key)
        self._counters["invalidations"] += len(matched)
        if matched:
            self.diagnostics.record("cache_invalidated", prefix=list(prefix), count=len(matched))
        return len(matched)

    def remove(self, prefix: QueryKey) -> int:
        matched = self._matching(prefix)
        for key in matched:
            del self._entries[key]
            self._bump(key)
        for key in [key for key in self._inflight if is_prefix(tuple(prefix), key)]:
            self._inflight.pop(key, None)
            self._bump(key)
        return len(matched)

    async def refetch_invalidated(self, prefix: QueryKey = ()) -> int:
        targets = [
            self._entries[key]
            for key in self._matching(prefix)
            if self._entries[key].invalidated and self._entries[key].fetcher is not None
        ]
        return await self._reload(targets)

    async def refresh_due(self) -> int:
        """Refetches entries whose tier has a background interval that has elapsed."""

        now = self.clock()
        targets = []
        for entry in self._entries.values():
            interval = self.config.tiers[entry.tier].refetch_interval_seconds
            if interval is None or entry.fetcher is None or entry.key in self._inflight:
                continue
            if now - entry.updated_at >= interval:
                targets.append(entry)
        return await self._reload(targets)

    def start_auto_refresh(self, interval_seconds: float | None = None) -> asyncio.Task:
        if self._auto_refresh is not None and not self._auto_refresh.done():
            return self._auto_refresh
        if interval_seconds is None:
            intervals = [
                tier.refetch_interval_seconds
                for tier in self.config.tiers.values()
                if tier.refetch_interval_seconds
            ]
            interval_seconds = min(intervals) if intervals else 30.0
        self._auto_refresh = asyncio.get_running_loop().create_task(self._auto_refresh_loop(interval_seconds))
        return self._auto_refresh

    def stop_auto_refresh(self) -> None:
        if self._auto_refresh is not None:
            self._auto_refresh.cancel()
            self._auto_refresh = None

    def garbage_collect(self) -> int:
        now = self.clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if key not in self._inflight and now - entry.last_access >= self.config.tiers[entry.tier].gc_seconds
        ]
        for key in expired:
            del self._entries[key]
        self._counters["collected"] += len(expired)
        return len(expired)

    def stats(self) -> dict[str, Any]:
        now = self.clock()
        stale = sum(
            1
            for entry in self._entries.values()
            if entry.invalidated or now - entry.updated_at >= self.config.tiers[entry.tier].stale_seconds
        )
        by_tier: dict[str, int] = {}
        for entry in self._entries.values():
            by_tier[entry.tier] = by_tier.get(entry.tier, 0) + 1
        return {
            "total_queries": len(self._entries),
            "stale_queries": stale,
            "error_queries": sum(1 for entry in self._entries.values() if entry.error),
            "loading_queries": len(self._inflight),
            "by_tier": by_tier,
            **self._counters,
        }

    def clear(self) -> None:
        for key in list(self._entries):
            self._bump(key)
        self._entries.clear()
        self._inflight.clear()

    async def drain(self) -> None:
        """Waits for background refreshes started so far."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        self.stop_auto_refresh()
        await self.drain()

    def restore(self, key: QueryKey, data: Any, tier: str, updated_at: float) -> None:
        key = tuple(key)
        if key in self._entries or tier not in self.config.tiers:
            return
        self._entries[key] = CacheEntry(
            key=key,
            data=data,
            tier=tier,
            updated_at=updated_at,
            last_access=self.clock(),
        )

    def iter_entries(self) -> Iterable[CacheEntry]:
        return list(self._entries.values())

    def _matching(self, prefix: QueryKey) -> list[QueryKey]:
        prefix = tuple(prefix)
        return [key for key in self._entries if is_prefix(prefix, key)]

    def _bump(self, key: QueryKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def _start_load(self, key: QueryKey, fetcher: Fetcher, tier: str) -> asyncio.Task:
        generation = self._generations.get(key, 0)
        task = asyncio.get_running_loop().create_task(self._load(key, fetcher, tier, generation))
        self._inflight[key] = task
        task.add_done_callback(lambda finished: self._forget(key, finished))
        return task

    def _forget(self, key: QueryKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Retrieve so unawaited background failures are not reported at exit.
            task.exception()

    async def _load(self, key: QueryKey, fetcher: Fetcher, tier: str, generation: int) -> Any:
        self._counters["fetches"] += 1
        try:
            data = await retry_transient(
                fetcher,
                max_retries=self.config.max_retries,
                base_delay=self.config.retry_base_delay_seconds,
                max_delay=self.config.retry_max_delay_seconds,
                sleep=self.sleep,
            )
        except Exception as exc:
            self._counters["errors"] += 1
            entry = self._entries.get(key)
            if entry is not None:
                entry.error = str(exc)
            self.diagnostics.record("cache_fetch_failed", key=list(key), error=str(exc))
            raise

        if self._generations.get(key, 0) == generation:
            now = self.clock()
            self._entries[key] = CacheEntry(
                key=key,
                data=data,
                tier=tier,
                updated_at=now,
                last_access=now,
                fetcher=fetcher,
            )
        return data

    def _schedule_refresh(self, key: QueryKey, fetcher: Fetcher, tier: str) -> None:
        if key in self._inflight:
            return
        task = self._start_load(key, fetcher, tier)
        self._background.add(task)
        task.add_done_callback(self._finish_background)

    def _finish_background(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Background refresh failed: %s", task.exception())

    async def _reload(self, entries: list[CacheEntry]) -> int:
        tasks = []
        for entry in entries:
            task = self._inflight.get(entry.key) or self._start_load(entry.key, entry.fetcher, entry.tier)
            tasks.append(task)
        if not tasks:
            return 0
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        refreshed = 0
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Refetch of %s failed: %s", entry.key, outcome)
            else:
                refreshed += 1
        return refreshed

    async def _auto_refresh_loop(self, interval_seconds: float) -> None:
        while True:
            await self.sleep(interval_seconds)
            try:
                await self.refresh_due()
                self.garbage_collect()
            except Exception:  # noqa: BLE001 - the refresh loop outlives individual failures.
                logger.exception("Automatic cache refresh failed")
