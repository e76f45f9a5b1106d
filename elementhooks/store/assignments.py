from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from elementhooks.cache import keys
from elementhooks.cache.query_cache import QueryCache
from elementhooks.core.diagnostics import Diagnostics, LoggingDiagnostics
from elementhooks.core.exceptions import DuplicateAssignmentError, NotFoundError, RemoteError, ValidationError
from elementhooks.core.metadata import DetectedElement, WebhookStatus
from elementhooks.logging.logger import get_logger
from elementhooks.remote.client import Filter, RemoteDataClient
from elementhooks.remote.models import (
    AssignmentPatch,
    CreateAssignmentInput,
    PaginatedAssignments,
    Pagination,
    SearchFilters,
    WebhookAssignment,
)

logger = get_logger(__name__)

ASSIGNMENTS_TABLE = "element_webhooks"
METRICS_TABLE = "webhook_performance_metrics"
TEST_EXECUTION_RPC = "test_webhook_execution"
MAX_BULK_CREATE = 100

DETAIL_TIER = "semi_static"
LIST_TIER = "dynamic"
STATUS_TIER = "realtime"


@dataclass(slots=True)
class BulkCreateFailure:
    index: int
    element_id: str
    error: str
    code: str


@dataclass(slots=True)
class BulkCreateResult:
    created: list[WebhookAssignment] = field(default_factory=list)
    failed: list[BulkCreateFailure] = field(default_factory=list)


class WebhookAssignmentStore:
    """Reads and writes element webhook assignments through the query cache.

    Detail entries are replaced with the record the server returns after a
    write; list-shaped entries are only ever invalidated, never patched.
    """

    def __init__(
        self,
        client: RemoteDataClient,
        cache: QueryCache,
        organization_id: str,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.organization_id = organization_id
        self.diagnostics = diagnostics or LoggingDiagnostics("store")
        self._user_id: str | None = None

    async def get(self, webhook_id: str) -> WebhookAssignment | None:
        if not webhook_id:
            return None

        async def load() -> WebhookAssignment | None:
            result = await self.client.select(
                ASSIGNMENTS_TABLE,
                filters=[("id", "eq", webhook_id), *self._scope()],
                limit=1,
            )
            return WebhookAssignment.model_validate(result.rows[0]) if result.rows else None

        data = await self.cache.fetch(keys.webhook_detail(webhook_id), load, DETAIL_TIER)
        return _as_assignment(data)

    async def search(
        self,
        filters: SearchFilters | None = None,
        pagination: Pagination | None = None,
    ) -> PaginatedAssignments:
        filters = filters or SearchFilters()
        pagination = pagination or Pagination()

        async def load() -> PaginatedAssignments:
            result = await self.client.select(
                ASSIGNMENTS_TABLE,
                filters=self._search_filters(filters),
                order=(pagination.sort_by, pagination.sort_order == "asc"),
                limit=pagination.limit,
                offset=(pagination.page - 1) * pagination.limit,
                count=True,
            )
            items = [WebhookAssignment.model_validate(row) for row in result.rows]
            total = result.count if result.count is not None else len(items)
            return PaginatedAssignments.build(items, total, pagination)

        data = await self.cache.fetch(keys.webhook_list(filters, pagination), load, LIST_TIER)
        return data if isinstance(data, PaginatedAssignments) else PaginatedAssignments.model_validate(data)

    def paged_search(self, filters: SearchFilters | None = None, page_size: int = 50) -> PagedSearch:
        return PagedSearch(self, filters or SearchFilters(), page_size)

    async def create(
        self,
        data: CreateAssignmentInput | dict[str, Any],
        *,
        invalidate: bool = True,
    ) -> WebhookAssignment:
        payload = data if isinstance(data, CreateAssignmentInput) else CreateAssignmentInput.model_validate(data)
        existing = await self.client.select(
            ASSIGNMENTS_TABLE,
            filters=[
                *self._scope(),
                ("feature_slug", "eq", payload.feature_slug),
                ("page_path", "eq", payload.page_path),
                ("element_id", "eq", payload.element_id),
            ],
            columns="id",
            limit=1,
        )
        if existing.rows:
            raise DuplicateAssignmentError(
                f"Element {payload.element_id} on {payload.page_path} already has a webhook",
                details={"existing_id": existing.rows[0].get("id")},
            )

        row = await self.client.insert(ASSIGNMENTS_TABLE, payload.to_row(self.organization_id, await self._user()))
        record = WebhookAssignment.model_validate(row)
        self.cache.set(keys.webhook_detail(record.id), record, DETAIL_TIER)
        if invalidate:
            self.invalidate_lists()
        self.diagnostics.record("assignment_created", id=record.id, element_id=record.element_id)
        return record

    async def update(
        self,
        webhook_id: str,
        patch: AssignmentPatch | dict[str, Any],
        *,
        invalidate: bool = True,
    ) -> WebhookAssignment:
        changes = patch if isinstance(patch, AssignmentPatch) else AssignmentPatch.model_validate(patch)
        rows = await self.client.update(
            ASSIGNMENTS_TABLE,
            [("id", "eq", webhook_id), *self._scope()],
            changes.to_row(await self._user()),
        )
        if not rows:
            raise NotFoundError(f"Webhook {webhook_id} not found")
        record = WebhookAssignment.model_validate(rows[0])
        self.cache.set(keys.webhook_detail(record.id), record, DETAIL_TIER)
        if invalidate:
            self.invalidate_lists()
        self.diagnostics.record("assignment_updated", id=record.id)
        return record

    async def delete(self, webhook_id: str, *, invalidate: bool = True) -> None:
        rows = await self.client.delete(ASSIGNMENTS_TABLE, [("id", "eq", webhook_id), *self._scope()])
        if not rows:
            raise NotFoundError(f"Webhook {webhook_id} not found")
        self.cache.remove(keys.webhook_detail(webhook_id))
        self.cache.remove(keys.executions(webhook_id))
        if invalidate:
            self.invalidate_lists()
        self.diagnostics.record("assignment_deleted", id=webhook_id)

    async def set_active(self, webhook_id: str, active: bool, *, invalidate: bool = True) -> WebhookAssignment:
        return await self.update(webhook_id, AssignmentPatch(is_active=active), invalidate=invalidate)

    async def for_element(self, element_id: str, page_path: str | None = None) -> list[WebhookAssignment]:
        filters: list[Filter] = [*self._scope(), ("element_id", "eq", element_id)]
        if page_path:
            filters.append(("page_path", "eq", page_path))
        return await self._list(keys.by_element(element_id, page_path), filters)

    async def for_page(self, page_path: str) -> list[WebhookAssignment]:
        return await self._list(keys.by_page(page_path), [*self._scope(), ("page_path", "eq", page_path)])

    async def for_feature(self, feature_slug: str) -> list[WebhookAssignment]:
        return await self._list(
            keys.by_feature(feature_slug),
            [*self._scope(), ("feature_slug", "eq", feature_slug)],
        )

    async def test_execution(
        self,
        webhook_id: str,
        element_id: str | None = None,
        *,
        invalidate: bool = True,
    ) -> Any:
        if element_id is None:
            record = await self.get(webhook_id)
            if record is None:
                raise NotFoundError(f"Webhook {webhook_id} not found")
            element_id = record.element_id
        outcome = await self.client.rpc(
            TEST_EXECUTION_RPC,
            {"p_webhook_id": webhook_id, "p_element_id": element_id},
        )
        self.cache.invalidate(keys.executions(webhook_id))
        if invalidate:
            self.cache.invalidate(keys.webhook_detail(webhook_id))
        return outcome

    async def reset_statistics(self, webhook_id: str, *, invalidate: bool = True) -> int:
        rows = await self.client.delete(METRICS_TABLE, [("webhook_id", "eq", webhook_id)])
        self.cache.invalidate(keys.executions(webhook_id))
        if invalidate:
            self.cache.invalidate(keys.webhook_detail(webhook_id))
        return len(rows)

    async def bulk_create(self, inputs: Iterable[CreateAssignmentInput | dict[str, Any]]) -> BulkCreateResult:
        pending = list(inputs)
        if len(pending) > MAX_BULK_CREATE:
            raise ValidationError(f"At most {MAX_BULK_CREATE} webhooks can be created at once")

        outcome = BulkCreateResult()
        for index, item in enumerate(pending):
            element_id = item.element_id if isinstance(item, CreateAssignmentInput) else str(item.get("element_id", ""))
            try:
                outcome.created.append(await self.create(item, invalidate=False))
            except RemoteError as exc:
                outcome.failed.append(BulkCreateFailure(index, element_id, str(exc), exc.code))
        if outcome.created:
            self.invalidate_lists()
        logger.info("Bulk create finished: %s created, %s failed", len(outcome.created), len(outcome.failed))
        return outcome

    async def status_for(self, element: DetectedElement) -> WebhookStatus:
        """Webhook status badge for a scanned element."""

        async def load() -> str:
            bindings = await self.for_element(element.id, element.metadata.page_path)
            if not bindings:
                return WebhookStatus.NONE.value
            active = [binding for binding in bindings if binding.is_active]
            if not active:
                return WebhookStatus.UNKNOWN.value
            return active[0].health_status

        key = keys.element_status(element.id, element.metadata.page_path)
        return WebhookStatus(await self.cache.fetch(key, load, STATUS_TIER))

    def invalidate_lists(self) -> None:
        for prefix in keys.list_prefixes():
            self.cache.invalidate(prefix)

    async def refresh(self) -> int:
        refreshed = await self.cache.refetch_invalidated(keys.WEBHOOKS)
        refreshed += await self.cache.refetch_invalidated(keys.STATUS)
        return refreshed

    async def _list(self, key: keys.QueryKey, filters: list[Filter]) -> list[WebhookAssignment]:
        async def load() -> list[WebhookAssignment]:
            result = await self.client.select(ASSIGNMENTS_TABLE, filters=filters, order=("created_at", False))
            return [WebhookAssignment.model_validate(row) for row in result.rows]

        data = await self.cache.fetch(key, load, LIST_TIER)
        return [_as_assignment(item) for item in data or []]

    async def _user(self) -> str | None:
        if self._user_id is None:
            self._user_id = await self.client.current_user_id()
        return self._user_id

    def _scope(self) -> list[Filter]:
        return [("organization_id", "eq", self.organization_id)]

    def _search_filters(self, filters: SearchFilters) -> list[Filter]:
        clauses: list[Filter] = self._scope()
        for column in ("feature_slug", "page_path", "element_id", "is_active", "http_method"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append((column, "eq", value))
        if filters.health_status:
            clauses.append(("health_status", "in", list(filters.health_status)))
        if filters.search:
            term = filters.search.replace(",", " ").strip()
            clauses.append(
                ("or", "or", f"display_name.ilike.*{term}*,endpoint_url.ilike.*{term}*,element_id.ilike.*{term}*")
            )
        return clauses


class PagedSearch:
    """Page cursor over ``search`` that keeps the last page visible while loading."""

    def __init__(self, store: WebhookAssignmentStore, filters: SearchFilters, page_size: int = 50) -> None:
        self.store = store
        self.filters = filters
        self.page_size = page_size
        self.page = 1
        self.data: PaginatedAssignments | None = None
        self.is_loading = False
        self.is_placeholder = False

    @property
    def items(self) -> list[WebhookAssignment]:
        return [] if self.data is None else self.data.items

    async def load(self, page: int = 1) -> PaginatedAssignments:
        self.page = page
        self.is_loading = True
        self.is_placeholder = self.data is not None
        try:
            result = await self.store.search(self.filters, Pagination(page=page, limit=self.page_size))
        finally:
            self.is_loading = False
            self.is_placeholder = False
        if self.page == page:
            self.data = result
        return result

    async def next_page(self) -> PaginatedAssignments:
        if self.data is None:
            return await self.load(self.page)
        if not self.data.has_next_page:
            return self.data
        return await self.load(self.page + 1)

    async def previous_page(self) -> PaginatedAssignments:
        return await self.load(max(1, self.page - 1))

    async def refresh(self) -> PaginatedAssignments:
        return await self.load(self.page)


def _as_assignment(data: Any) -> WebhookAssignment | None:
    if data is None or isinstance(data, WebhookAssignment):
        return data
    return WebhookAssignment.model_validate(data)
