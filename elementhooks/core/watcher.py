from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Iterable, Protocol

from elementhooks.config.schema import WatcherConfig
from elementhooks.core.diagnostics import Diagnostics, LoggingDiagnostics
from elementhooks.core.metadata import DetectedElement, MutationRecord, ScanDelta, ScanResult, WebhookStatus
from elementhooks.core.scanner import ElementScanner
from elementhooks.logging.logger import get_logger

logger = get_logger(__name__)

ResultCallback = Callable[[ScanResult], Any]


class WatcherState(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    PENDING = "pending"
    SCANNING = "scanning"


class MutationSource(Protocol):
    def install(self) -> None: ...

    def uninstall(self) -> None: ...

    def flush_events(self) -> list[MutationRecord]: ...


class MutationWatcher:
    """Owns the monitoring lifecycle: observe, debounce, re-scan, deliver.

    Every scan is numbered when it is triggered. A result is delivered only if
    it is newer than the last delivered one and the monitoring session that
    triggered it is still active; in-flight scans are never cancelled.
    """

    def __init__(
        self,
        scanner: ElementScanner,
        config: WatcherConfig | None = None,
        mutation_source: MutationSource | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.scanner = scanner
        self.config = config or WatcherConfig()
        self.mutation_source = mutation_source
        self.diagnostics = diagnostics or LoggingDiagnostics("watcher")
        self.last_delta = ScanDelta()
        self.scans_started = 0
        self._state = WatcherState.IDLE
        self._callback: ResultCallback | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task | None = None
        self._scan_tasks: set[asyncio.Task] = set()
        self._elements: dict[str, DetectedElement] = {}
        self._session = 0
        self._sequence = 0
        self._delivered = 0

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def elements(self) -> dict[str, DetectedElement]:
        return dict(self._elements)

    def start_monitoring(self, on_result: ResultCallback) -> None:
        if self._state is not WatcherState.IDLE:
            self.stop_monitoring()
        self._loop = asyncio.get_running_loop()
        self._session += 1
        self._callback = on_result
        self._state = WatcherState.OBSERVING
        if self.mutation_source is not None:
            self.mutation_source.install()
            self._poll_task = self._loop.create_task(self._poll())
        self.diagnostics.record("monitoring_started", session=self._session)
        self._spawn_scan()

    def stop_monitoring(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self.mutation_source is not None and self._state is not WatcherState.IDLE:
            try:
                self.mutation_source.uninstall()
            except Exception as exc:  # noqa: BLE001 - the page may already be gone.
                logger.warning("Could not detach mutation observer: %s", exc)
        self._callback = None
        self._elements.clear()
        self._session += 1
        self._state = WatcherState.IDLE
        self.diagnostics.record("monitoring_stopped")

    def handle_mutations(self, records: Iterable[MutationRecord]) -> bool:
        """Re-arms the debounce timer when any record qualifies for a re-scan."""

        if self._state is WatcherState.IDLE:
            return False
        if not any(self._qualifies(record) for record in records):
            return False
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.config.debounce_seconds, self._on_quiet)
        self._state = WatcherState.PENDING
        return True

    async def scan_now(self) -> ScanResult | None:
        if self._state is WatcherState.IDLE:
            return await self.scanner.scan()
        return await self._spawn_scan()

    def get_element(self, element_id: str) -> DetectedElement | None:
        return self._elements.get(element_id)

    def update_element_status(self, element_id: str, status: WebhookStatus, webhook_count: int = 0) -> bool:
        element = self._elements.get(element_id)
        if element is None:
            return False
        element.webhook_status = status
        element.webhook_count = webhook_count
        return True

    def debug_snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "session": self._session,
            "cached_elements": len(self._elements),
            "scans_started": self.scans_started,
            "last_delivered_scan": self._delivered,
            "scans_in_flight": len(self._scan_tasks),
            "timer_armed": self._timer is not None,
            "last_delta": {
                "added": len(self.last_delta.added),
                "removed": len(self.last_delta.removed),
                "changed": len(self.last_delta.changed),
            },
        }

    def _qualifies(self, record: MutationRecord) -> bool:
        if record.inside_tool_ui:
            return False
        if record.type == "childList":
            return record.added_count > 0 or record.removed_count > 0
        if record.type == "attributes":
            return record.attribute_name in self.config.tracked_attributes
        return False

    def _on_quiet(self) -> None:
        self._timer = None
        self._spawn_scan()

    def _spawn_scan(self) -> asyncio.Task:
        self._sequence += 1
        self.scans_started += 1
        task = self._loop.create_task(self._run_scan(self._sequence, self._session))
        self._scan_tasks.add(task)
        task.add_done_callback(self._scan_tasks.discard)
        self._state = WatcherState.SCANNING
        self.diagnostics.record("scan_triggered", sequence=self._sequence)
        return task

    async def _run_scan(self, sequence: int, session: int) -> ScanResult | None:
        try:
            result = await self.scanner.scan()
        except Exception as exc:  # noqa: BLE001 - monitoring continues after a failed sweep.
            logger.error("Scan %s failed: %s", sequence, exc)
            self.diagnostics.record("scan_failed", sequence=sequence, error=str(exc))
            result = None

        if session != self._session:
            return result
        self._settle_state()
        if result is None:
            return None
        if sequence < self._delivered:
            self.diagnostics.record("scan_superseded", sequence=sequence)
            return result
        self._delivered = sequence
        self.last_delta = self._merge(result)
        if self._callback is not None:
            try:
                self._callback(result)
            except Exception:  # noqa: BLE001 - a faulty subscriber must not stop monitoring.
                logger.exception("Scan result callback raised")
        return result

    def _settle_state(self) -> None:
        if self._timer is not None:
            self._state = WatcherState.PENDING
        elif len(self._scan_tasks) > 1:
            self._state = WatcherState.SCANNING
        else:
            self._state = WatcherState.OBSERVING

    def _merge(self, result: ScanResult) -> ScanDelta:
        previous = self._elements
        delta = ScanDelta()
        current: dict[str, DetectedElement] = {}
        for element in result.elements:
            known = previous.get(element.id)
            if known is None:
                delta.added.append(element.id)
            elif known.content_hash != element.content_hash:
                delta.changed.append(element.id)
            current[element.id] = element
        delta.removed = [element_id for element_id in previous if element_id not in current]
        self._elements = current
        return delta

    async def _poll(self) -> None:
        while True:
            try:
                records = await asyncio.to_thread(self.mutation_source.flush_events)
            except Exception as exc:  # noqa: BLE001 - keep polling through transient driver errors.
                logger.warning("Could not read mutation buffer: %s", exc)
                records = []
            self.handle_mutations(records)
            await asyncio.sleep(self.config.poll_interval_seconds)
