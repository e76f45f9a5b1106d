from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from elementhooks.config.loader import ConfigLoader
from elementhooks.config.schema import BrowserConfig, CacheConfig, RemoteConfig


def test_config_loader_validates_json(tmp_path):
    config_path = tmp_path / "elementhooks.json"
    config_path.write_text(
        json.dumps(
            {
                "remote": {
                    "url": "https://data.example.com/",
                    "api_key": "anon-key",
                    "organization_id": "org-1",
                },
                "scan": {"min_size": {"width": 4, "height": 4}, "include_hidden": True},
                "cache": {"tiers": {"realtime": {"stale_seconds": 10, "gc_seconds": 60, "refetch_interval_seconds": 5}}},
                "browser": {"name": "Firefox"},
            }
        ),
        encoding="utf-8",
    )

    config = ConfigLoader.load(config_path)

    assert config.remote.url == "https://data.example.com"
    assert config.scan.min_size.width == 4
    assert config.scan.include_hidden
    assert config.cache.tiers["realtime"].refetch_interval_seconds == 5
    assert config.cache.tiers["static"].stale_seconds == 30 * 60
    assert config.browser.name == "firefox"
    assert config.watcher.debounce_seconds == 0.3
    assert config.bulk.max_consecutive_transport_failures == 3


def test_scan_overrides_return_a_new_config(tmp_path):
    config_path = tmp_path / "elementhooks.json"
    config_path.write_text(
        json.dumps({"remote": {"url": "http://localhost:54321", "api_key": "k", "organization_id": "o"}}),
        encoding="utf-8",
    )
    config = ConfigLoader.load(config_path)

    updated = ConfigLoader.with_scan_overrides(config, {"max_elements": 25, "selectors": ["button"]})

    assert updated.scan.max_elements == 25
    assert updated.scan.selectors == ["button"]
    assert config.scan.max_elements == 1000


def test_invalid_settings_are_rejected():
    with pytest.raises(ValidationError):
        CacheConfig(tiers={"forever": {"stale_seconds": 1, "gc_seconds": 2}})
    with pytest.raises(ValidationError):
        BrowserConfig(name="safari")
    with pytest.raises(ValidationError):
        RemoteConfig(url="ftp://data.example.com", api_key="k", organization_id="o")
