from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Literal, Sequence

from elementhooks.cache import keys
from elementhooks.config.schema import BulkConfig
from elementhooks.core.diagnostics import Diagnostics, LoggingDiagnostics
from elementhooks.core.exceptions import EmptySelectionError, TransportError
from elementhooks.logging.logger import get_logger

if TYPE_CHECKING:
    from elementhooks.bulk.items import BulkOperationItem
    from elementhooks.logging.artifacts import ArtifactManager
    from elementhooks.logging.audit import BulkAuditLogger
    from elementhooks.store.assignments import WebhookAssignmentStore

logger = get_logger(__name__)

ResultStatus = Literal["success", "error", "skipped"]
ProgressCallback = Callable[[int, int], Awaitable[None] | None]


class OperationKind(str, Enum):
    ENABLE = "enable"
    DISABLE = "disable"
    DELETE = "delete"
    TEST = "test"
    RESET_STATS = "reset_stats"
    EXPORT = "export"


@dataclass(slots=True)
class BulkOperationResult:
    item_id: str
    operation: str
    status: ResultStatus
    error_message: str | None = None


@dataclass(slots=True)
class BulkSummary:
    total: int
    succeeded: int
    failed: int
    skipped: int

    @property
    def has_errors(self) -> bool:
        return self.failed > 0

    @property
    def message(self) -> str:
        if not self.failed:
            return f"Operation completed successfully on {self.succeeded} webhooks"
        return f"Operation completed with {self.failed} errors out of {self.total} webhooks"


def summarize(results: Sequence[BulkOperationResult]) -> BulkSummary:
    return BulkSummary(
        total=len(results),
        succeeded=sum(1 for result in results if result.status == "success"),
        failed=sum(1 for result in results if result.status == "error"),
        skipped=sum(1 for result in results if result.status == "skipped"),
    )


class BulkOperationEngine:
    """Applies one operation to a selection of webhooks, item by item.

    Items run strictly in selection order and ``results[i]`` always describes
    ``selection[i]``. A failing item is recorded and the loop moves on; only a
    run of transport failures or an explicit ``abort()`` stops it, and every
    item not attempted is then reported as skipped.
    """

    def __init__(
        self,
        store: WebhookAssignmentStore,
        config: BulkConfig | None = None,
        audit_logger: BulkAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.store = store
        self.config = config or BulkConfig()
        self.audit_logger = audit_logger
        self.artifact_manager = artifact_manager
        self.diagnostics = diagnostics or LoggingDiagnostics("bulk")
        self.last_export_path: Path | None = None
        self._abort_requested = False
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def abort(self) -> None:
        if self._running:
            self._abort_requested = True

    async def execute(
        self,
        selection: Iterable[BulkOperationItem],
        operation: OperationKind | str,
        on_progress: ProgressCallback | None = None,
    ) -> list[BulkOperationResult]:
        kind = OperationKind(operation)
        items = list(selection)
        if not items:
            raise EmptySelectionError(f"No webhooks selected for {kind.value}")

        started = time.perf_counter()
        self._running = True
        self._abort_requested = False
        try:
            if kind is OperationKind.EXPORT:
                results = await self._export(items, on_progress)
            else:
                results = await self._run(items, kind, on_progress)
                await self._settle(items, kind)
        finally:
            aborted = self._abort_requested
            self._running = False
            self._abort_requested = False

        summary = summarize(results)
        logger.info("Bulk %s finished: %s", kind.value, summary.message)
        self.diagnostics.record(
            "bulk_completed",
            operation=kind.value,
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        if self.audit_logger is not None:
            self.audit_logger.write(
                kind.value,
                results,
                organization_id=self.store.organization_id,
                aborted=aborted,
                duration_ms=round((time.perf_counter() - started) * 1000),
            )
        return results

    def export_document(
        self,
        selection: Iterable[BulkOperationItem],
        organization_id: str | None = None,
    ) -> dict[str, Any]:
        return {
            "exported_at": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "organization_id": organization_id or self.store.organization_id,
            "webhooks": [
                {
                    "name": item.name,
                    "feature_slug": item.feature_slug,
                    "element_id": item.element_id,
                    "endpoint_url": item.endpoint_url,
                    "is_enabled": item.is_enabled,
                }
                for item in selection
            ],
        }

    async def _run(
        self,
        items: list[BulkOperationItem],
        kind: OperationKind,
        on_progress: ProgressCallback | None,
    ) -> list[BulkOperationResult]:
        results: list[BulkOperationResult] = []
        consecutive_transport_failures = 0
        halted = False
        total = len(items)

        for index, item in enumerate(items):
            if halted or self._abort_requested:
                results.append(BulkOperationResult(item.id, kind.value, "skipped"))
                await _notify(on_progress, index + 1, total)
                continue

            try:
                await self._apply(item, kind)
            except Exception as exc:  # noqa: BLE001 - one item's failure must not stop the run.
                logger.warning("Bulk %s failed for %s: %s", kind.value, item.id, exc)
                results.append(BulkOperationResult(item.id, kind.value, "error", str(exc) or type(exc).__name__))
                if isinstance(exc, TransportError):
                    consecutive_transport_failures += 1
                else:
                    consecutive_transport_failures = 0
                if consecutive_transport_failures >= self.config.max_consecutive_transport_failures:
                    logger.error(
                        "Stopping bulk %s after %s consecutive transport failures",
                        kind.value,
                        consecutive_transport_failures,
                    )
                    halted = True
            else:
                results.append(BulkOperationResult(item.id, kind.value, "success"))
                consecutive_transport_failures = 0

            await _notify(on_progress, index + 1, total)
            if index < total - 1 and not halted and self.config.inter_item_delay_seconds:
                await asyncio.sleep(self.config.inter_item_delay_seconds)

        return results

    async def _apply(self, item: BulkOperationItem, kind: OperationKind) -> None:
        if kind is OperationKind.ENABLE:
            await self.store.set_active(item.id, True, invalidate=False)
        elif kind is OperationKind.DISABLE:
            await self.store.set_active(item.id, False, invalidate=False)
        elif kind is OperationKind.DELETE:
            await self.store.delete(item.id, invalidate=False)
        elif kind is OperationKind.TEST:
            await self.store.test_execution(item.id, item.element_id, invalidate=False)
        elif kind is OperationKind.RESET_STATS:
            await self.store.reset_statistics(item.id, invalidate=False)
        else:
            raise ValueError(f"Unknown operation: {kind}")

    async def _export(
        self,
        items: list[BulkOperationItem],
        on_progress: ProgressCallback | None,
    ) -> list[BulkOperationResult]:
        document = self.export_document(items)
        if self.artifact_manager is not None:
            self.last_export_path = self.artifact_manager.write_export(document)
            logger.info("Exported %s webhooks to %s", len(items), self.last_export_path)
        await _notify(on_progress, len(items), len(items))
        return [BulkOperationResult(item.id, OperationKind.EXPORT.value, "success") for item in items]

    async def _settle(self, items: list[BulkOperationItem], kind: OperationKind) -> None:
        if kind in (OperationKind.TEST, OperationKind.RESET_STATS):
            for item in items:
                self.store.cache.invalidate(keys.webhook_detail(item.id))
        self.store.invalidate_lists()
        try:
            await self.store.refresh()
        except Exception as exc:  # noqa: BLE001 - results are already final.
            logger.warning("Refresh after bulk %s failed: %s", kind.value, exc)


async def _notify(callback: ProgressCallback | None, completed: int, total: int) -> None:
    if callback is None:
        return
    try:
        outcome = callback(completed, total)
        if asyncio.iscoroutine(outcome):
            await outcome
    except Exception:  # noqa: BLE001 - progress reporting must not break the run.
        logger.exception("Bulk progress callback raised")
