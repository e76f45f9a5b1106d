from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Awaitable, Callable, Iterable, Protocol
from urllib.parse import urlparse

from elementhooks.config.schema import ScanConfiguration
from elementhooks.core.classifier import classify, content_hash, dom_path, extract_metadata, make_id
from elementhooks.core.diagnostics import Diagnostics, LoggingDiagnostics
from elementhooks.core.metadata import (
    DetectedElement,
    DomNode,
    ElementType,
    PageSnapshot,
    ScanResult,
    WebhookStatus,
)
from elementhooks.logging.logger import get_logger

logger = get_logger(__name__)

StatusLookup = Callable[[DetectedElement], Awaitable[WebhookStatus]]


class DocumentSource(Protocol):
    def snapshot(self, config: ScanConfiguration) -> PageSnapshot: ...


class ElementScanner:
    """Sweeps a document for interactive elements and classifies them.

    Scans are serialized: overlapping callers wait for the running sweep and
    then take their own snapshot, so each result reflects the page at the time
    its sweep started.
    """

    def __init__(
        self,
        document: DocumentSource,
        config: ScanConfiguration | None = None,
        status_lookup: StatusLookup | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.document = document
        self.config = config or ScanConfiguration()
        self.status_lookup = status_lookup
        self.diagnostics = diagnostics or LoggingDiagnostics("scanner")
        self._lock = asyncio.Lock()

    def update_configuration(self, **overrides) -> ScanConfiguration:
        merged = self.config.model_dump()
        merged.update(overrides)
        self.config = ScanConfiguration.model_validate(merged)
        return self.config

    async def scan(self) -> ScanResult:
        async with self._lock:
            return await self._scan()

    async def _scan(self) -> ScanResult:
        started = time.perf_counter()
        config = self.config
        snapshot = await asyncio.to_thread(self.document.snapshot, config)
        page_path = urlparse(snapshot.url).path or "/"

        detected: list[DetectedElement] = []
        for node in self.valid_candidates(snapshot, config):
            try:
                detected.append(self._describe(node, page_path))
            except Exception as exc:  # noqa: BLE001 - one bad element must not abort the sweep.
                logger.warning("Skipping element <%s> that failed classification: %s", node.tag, exc)
                self.diagnostics.record("element_skipped", tag=node.tag, error=str(exc))

        statuses = await asyncio.gather(*(self._lookup_status(element) for element in detected))
        for element, status in zip(detected, statuses):
            element.webhook_status = status
            element.webhook_count = 0 if status is WebhookStatus.NONE else 1

        result = ScanResult(
            timestamp=datetime.now(UTC),
            page_url=snapshot.url,
            elements_found=len(detected),
            elements_with_webhooks=sum(1 for item in detected if item.webhook_status is not WebhookStatus.NONE),
            scan_duration_ms=round((time.perf_counter() - started) * 1000),
            elements=detected,
        )
        self.diagnostics.record(
            "scan_completed",
            elements_found=result.elements_found,
            elements_with_webhooks=result.elements_with_webhooks,
            duration_ms=result.scan_duration_ms,
        )
        return result

    def valid_candidates(self, snapshot: PageSnapshot, config: ScanConfiguration) -> list[DomNode]:
        excluded = {id(node) for node in snapshot.exclusion_roots}
        valid = [
            node
            for node in snapshot.candidates
            if not _is_excluded(node, excluded) and self._is_valid(node, config)
        ]
        return valid[: config.max_elements]

    @staticmethod
    def _is_valid(node: DomNode, config: ScanConfiguration) -> bool:
        if not config.include_hidden and not is_visible(node):
            return False
        if not config.include_disabled and is_disabled(node):
            return False
        return node.rect.width >= config.min_size.width and node.rect.height >= config.min_size.height

    @staticmethod
    def _describe(node: DomNode, page_path: str) -> DetectedElement:
        element_type = classify(node)
        metadata = extract_metadata(node, page_path)
        return DetectedElement(
            id=make_id(node, metadata),
            element_type=element_type,
            dom_path=dom_path(node),
            content_hash=content_hash(node),
            bounding_rect=node.rect,
            metadata=metadata,
            is_visible=node.rect.width > 0 and node.rect.height > 0,
            z_index=_z_index(node),
        )

    async def _lookup_status(self, element: DetectedElement) -> WebhookStatus:
        if self.status_lookup is None:
            return WebhookStatus.NONE
        try:
            return await asyncio.wait_for(
                self.status_lookup(element),
                timeout=self.config.status_lookup_timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001 - an unknown binding reads as no binding.
            logger.debug("Webhook status lookup failed for %s: %r", element.id, exc)
            return WebhookStatus.NONE


@dataclass(slots=True)
class ElementFilter:
    element_types: list[ElementType] = field(default_factory=list)
    webhook_statuses: list[WebhookStatus] = field(default_factory=list)
    feature_slug: str | None = None
    search_query: str = ""


def filter_elements(elements: Iterable[DetectedElement], criteria: ElementFilter) -> list[DetectedElement]:
    query = criteria.search_query.strip().lower()
    matched = []
    for element in elements:
        if criteria.element_types and element.element_type not in criteria.element_types:
            continue
        if criteria.webhook_statuses and element.webhook_status not in criteria.webhook_statuses:
            continue
        if criteria.feature_slug and element.metadata.feature_slug != criteria.feature_slug:
            continue
        if query:
            haystack = " ".join(
                filter(None, [element.id, element.metadata.text_content, element.metadata.aria_label])
            ).lower()
            if query not in haystack:
                continue
        matched.append(element)
    return matched


def is_visible(node: DomNode) -> bool:
    styles = node.styles
    if styles.get("display") == "none" or styles.get("visibility") == "hidden":
        return False
    if _opacity(styles.get("opacity")) == 0:
        return False
    return not node.has("hidden")


def is_disabled(node: DomNode) -> bool:
    return node.has("disabled") or (node.get("aria-disabled") or "").lower() == "true"


def _is_excluded(node: DomNode, excluded: set[int]) -> bool:
    if not excluded:
        return False
    if id(node) in excluded:
        return True
    return any(id(ancestor) in excluded for ancestor in node.ancestors())


def _opacity(value: str | None) -> float:
    try:
        return float(value) if value not in (None, "") else 1.0
    except ValueError:
        return 1.0


def _z_index(node: DomNode) -> int:
    try:
        return int(node.styles.get("z-index", "0"))
    except ValueError:
        return 0
