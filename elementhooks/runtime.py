from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from elementhooks.bulk.engine import BulkOperationEngine
from elementhooks.cache.persistence import CachePersister
from elementhooks.cache.query_cache import QueryCache
from elementhooks.cache.subscriptions import RealtimeInvalidator
from elementhooks.config.schema import AppConfig
from elementhooks.core.browser import BrowserDocument
from elementhooks.core.diagnostics import Diagnostics, LoggingDiagnostics
from elementhooks.core.dom_monitor import BrowserMutationSource, DomMonitor
from elementhooks.core.scanner import DocumentSource, ElementScanner
from elementhooks.core.watcher import MutationSource, MutationWatcher
from elementhooks.logging.artifacts import ArtifactManager
from elementhooks.logging.audit import BulkAuditLogger
from elementhooks.logging.logger import configure_logging, get_logger
from elementhooks.remote.client import RemoteDataClient, create_remote_client
from elementhooks.remote.realtime import ChangeFeed
from elementhooks.store.assignments import WebhookAssignmentStore

logger = get_logger(__name__)


@dataclass(slots=True)
class ElementHooksRuntime:
    config: AppConfig
    client: RemoteDataClient
    cache: QueryCache
    store: WebhookAssignmentStore
    scanner: ElementScanner
    watcher: MutationWatcher
    engine: BulkOperationEngine
    artifacts: ArtifactManager
    invalidator: RealtimeInvalidator | None = None
    persister: CachePersister | None = None


def build_runtime(
    config: AppConfig,
    document: DocumentSource,
    client: RemoteDataClient | None = None,
    feed: ChangeFeed | None = None,
    *,
    mutation_source: MutationSource | None = None,
    diagnostics: Diagnostics | None = None,
) -> ElementHooksRuntime:
    """Wires one cache, store, scanner, watcher and bulk engine together."""

    configure_logging(config.logging)
    client = client or create_remote_client(config.remote)
    cache = QueryCache(config.cache, diagnostics=diagnostics or LoggingDiagnostics("cache"))
    store = WebhookAssignmentStore(
        client,
        cache,
        config.remote.organization_id,
        diagnostics=diagnostics or LoggingDiagnostics("store"),
    )
    scanner = ElementScanner(
        document,
        config.scan,
        status_lookup=store.status_for,
        diagnostics=diagnostics or LoggingDiagnostics("scanner"),
    )
    if mutation_source is None and isinstance(document, BrowserDocument):
        monitor = DomMonitor(config.watcher.tracked_attributes, config.watcher.tool_ui_selectors)
        mutation_source = BrowserMutationSource(document.driver, monitor)
    watcher = MutationWatcher(
        scanner,
        config.watcher,
        mutation_source=mutation_source,
        diagnostics=diagnostics or LoggingDiagnostics("watcher"),
    )
    artifacts = ArtifactManager(config.artifacts_root)
    engine = BulkOperationEngine(
        store,
        config.bulk,
        audit_logger=BulkAuditLogger(config.artifacts_root),
        artifact_manager=artifacts,
        diagnostics=diagnostics or LoggingDiagnostics("bulk"),
    )
    invalidator = RealtimeInvalidator(cache, feed, config.remote.organization_id) if feed is not None else None
    persister = None
    if config.cache.persist_path:
        persister = CachePersister(config.cache.persist_path, config.cache.persist_max_age_seconds)
    return ElementHooksRuntime(
        config=config,
        client=client,
        cache=cache,
        store=store,
        scanner=scanner,
        watcher=watcher,
        engine=engine,
        artifacts=artifacts,
        invalidator=invalidator,
        persister=persister,
    )


@asynccontextmanager
async def managed_runtime(
    config: AppConfig,
    document: DocumentSource,
    client: RemoteDataClient | None = None,
    feed: ChangeFeed | None = None,
    **kwargs,
) -> AsyncIterator[ElementHooksRuntime]:
    runtime = build_runtime(config, document, client, feed, **kwargs)
    if runtime.persister is not None:
        runtime.persister.restore(runtime.cache)
    if runtime.invalidator is not None:
        runtime.invalidator.start()
    runtime.cache.start_auto_refresh()
    try:
        yield runtime
    finally:
        runtime.watcher.stop_monitoring()
        if runtime.invalidator is not None:
            runtime.invalidator.stop()
        await runtime.cache.close()
        if runtime.persister is not None:
            try:
                runtime.persister.save(runtime.cache)
            except OSError as exc:
                logger.warning("Could not persist query cache: %s", exc)
        await runtime.client.aclose()
