from __future__ import annotations

from pydantic import ValidationError as ModelValidationError

from elementhooks.cache import keys
from elementhooks.cache.query_cache import QueryCache
from elementhooks.logging.logger import get_logger
from elementhooks.remote.models import ChangeEvent, WebhookAssignment
from elementhooks.remote.realtime import ChangeFeed

logger = get_logger(__name__)

ASSIGNMENTS_TABLE = "element_webhooks"
EXECUTION_LOGS_TABLE = "element_webhook_logs"
DETAIL_TIER = "semi_static"


class RealtimeInvalidator:
    """Applies remote row changes to the cache the same way local writes do."""

    def __init__(self, cache: QueryCache, feed: ChangeFeed, organization_id: str) -> None:
        self.cache = cache
        self.feed = feed
        self.organization_id = organization_id
        self.events_applied = 0
        self._subscriptions: list[str] = []

    @property
    def active(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        if self._subscriptions:
            return
        scope = {"organization_id": self.organization_id}
        self._subscriptions = [
            self.feed.subscribe(ASSIGNMENTS_TABLE, self.handle_assignment_change, filters=scope),
            self.feed.subscribe(EXECUTION_LOGS_TABLE, self.handle_execution_change),
        ]
        logger.info("Realtime invalidation started for organization %s", self.organization_id)

    def stop(self) -> None:
        for subscription_id in self._subscriptions:
            self.feed.unsubscribe(subscription_id)
        self._subscriptions = []

    def handle_assignment_change(self, event: ChangeEvent) -> None:
        if event.event_type == "update" and event.new and event.new.get("id"):
            try:
                record = WebhookAssignment.model_validate(event.new)
            except ModelValidationError as exc:
                logger.warning("Partial update row for %s, invalidating instead: %s", event.new.get("id"), exc)
                self.cache.invalidate(keys.webhook_detail(event.new["id"]))
            else:
                self.cache.set(keys.webhook_detail(record.id), record, DETAIL_TIER)
        elif event.event_type == "delete":
            row = event.old or {}
            if row.get("id"):
                self.cache.remove(keys.webhook_detail(row["id"]))

        for prefix in keys.list_prefixes():
            self.cache.invalidate(prefix)
        self.events_applied += 1

    def handle_execution_change(self, event: ChangeEvent) -> None:
        row = event.new or event.old or {}
        webhook_id = row.get("webhook_id")
        self.cache.invalidate(keys.executions(webhook_id) if webhook_id else keys.executions())
        self.events_applied += 1
