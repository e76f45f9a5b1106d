from __future__ import annotations

import pytest

from elementhooks.cache.query_cache import QueryCache
from elementhooks.config.schema import AppConfig, BulkConfig, CacheConfig, RemoteConfig
from elementhooks.core.diagnostics import RecordingDiagnostics
from elementhooks.logging.artifacts import ArtifactManager
from elementhooks.store.assignments import WebhookAssignmentStore
from tests.helpers import FakeClock, FakeRemoteClient, no_sleep


@pytest.fixture()
def artifact_manager(tmp_path):
    return ArtifactManager(tmp_path / "artifacts")


@pytest.fixture()
def app_config(tmp_path):
    return AppConfig(
        remote=RemoteConfig(url="https://data.example.com", api_key="anon-key", organization_id="org-1"),
        cache=CacheConfig(retry_base_delay_seconds=0, retry_max_delay_seconds=0),
        bulk=BulkConfig(inter_item_delay_seconds=0),
        artifacts_root=str(tmp_path / "artifacts"),
    )


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def diagnostics():
    return RecordingDiagnostics()


@pytest.fixture()
def fake_client():
    return FakeRemoteClient()


@pytest.fixture()
def cache(app_config, clock, diagnostics):
    return QueryCache(app_config.cache, clock=clock, sleep=no_sleep, diagnostics=diagnostics)


@pytest.fixture()
def store(fake_client, cache, diagnostics):
    return WebhookAssignmentStore(fake_client, cache, "org-1", diagnostics=diagnostics)
