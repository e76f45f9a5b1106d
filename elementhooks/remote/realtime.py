from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from elementhooks.logging.logger import get_logger
from elementhooks.remote.models import ChangeEvent

logger = get_logger(__name__)

ChangeHandler = Callable[[ChangeEvent], Awaitable[None] | None]


class ChangeFeed(ABC):
    """Source of row-change events for remote tables."""

    @abstractmethod
    def subscribe(self, table: str, handler: ChangeHandler, *, filters: dict[str, Any] | None = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> None:
        raise NotImplementedError


class InMemoryChangeFeed(ChangeFeed):
    """Dispatches published events to matching subscribers in-process."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, tuple[str, ChangeHandler, dict[str, Any]]] = {}
        self._counter = 0

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, table: str, handler: ChangeHandler, *, filters: dict[str, Any] | None = None) -> str:
        self._counter += 1
        subscription_id = f"{table}:{self._counter}"
        self._subscriptions[subscription_id] = (table, handler, dict(filters or {}))
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    async def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for table, handler, filters in list(self._subscriptions.values()):
            if table != event.table or not _matches(event, filters):
                continue
            try:
                outcome = handler(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:  # noqa: BLE001 - one subscriber must not starve the others.
                logger.exception("Change handler for %s raised", table)
                continue
            delivered += 1
        return delivered


def _matches(event: ChangeEvent, filters: dict[str, Any]) -> bool:
    # Delete events may carry only the primary key in `old`.
    row = event.new or event.old or {}
    return all(row[column] == value for column, value in filters.items() if column in row)
