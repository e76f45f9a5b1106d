from __future__ import annotations

import json
import zlib
from pathlib import Path
from typing import Any, Callable

from pydantic_core import to_jsonable_python

from elementhooks.cache.keys import is_persistable
from elementhooks.cache.query_cache import QueryCache
from elementhooks.logging.logger import get_logger

logger = get_logger(__name__)

FORMAT_VERSION = 1


class CachePersister:
    """Writes assignment queries to a compressed file and restores them at startup.

    Only ``webhooks`` queries are kept; execution and status data is always
    refetched. A file older than ``max_age_seconds`` is discarded outright.
    """

    def __init__(
        self,
        path: str | Path,
        max_age_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.path = Path(path)
        self.max_age_seconds = max_age_seconds
        self.clock = clock

    def save(self, cache: QueryCache) -> int:
        now = (self.clock or cache.clock)()
        queries = [
            {
                "key": list(entry.key),
                "tier": entry.tier,
                "updated_at": entry.updated_at,
                "data": to_jsonable_python(entry.data),
            }
            for entry in cache.iter_entries()
            if is_persistable(entry.key) and not entry.invalidated and entry.error is None
        ]
        document = {"version": FORMAT_VERSION, "saved_at": now, "queries": queries}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(zlib.compress(json.dumps(document).encode("utf-8")))
        logger.info("Persisted %s cached queries to %s", len(queries), self.path)
        return len(queries)

    def restore(self, cache: QueryCache) -> int:
        document = self._read()
        if document is None:
            return 0
        now = (self.clock or cache.clock)()
        if now - float(document.get("saved_at", 0)) > self.max_age_seconds:
            logger.info("Discarding expired cache file %s", self.path)
            self.discard()
            return 0

        restored = 0
        for query in document.get("queries", []):
            key = tuple(query.get("key") or ())
            if not is_persistable(key):
                continue
            cache.restore(key, query.get("data"), query.get("tier", "dynamic"), float(query.get("updated_at", 0)))
            restored += 1
        logger.info("Restored %s cached queries from %s", restored, self.path)
        return restored

    def discard(self) -> None:
        self.path.unlink(missing_ok=True)

    def _read(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            document = json.loads(zlib.decompress(self.path.read_bytes()).decode("utf-8"))
        except (OSError, zlib.error, ValueError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, exc)
            return None
        if not isinstance(document, dict) or document.get("version") != FORMAT_VERSION:
            return None
        return document
