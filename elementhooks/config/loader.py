from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from elementhooks.config.schema import AppConfig, ScanConfiguration


class ConfigLoader:
    """Loads and validates the JSON application configuration."""

    @staticmethod
    def load(path: str | Path) -> AppConfig:
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return AppConfig.model_validate(payload)

    @staticmethod
    def with_scan_overrides(config: AppConfig, overrides: dict[str, Any]) -> AppConfig:
        """Returns a copy whose scan settings are updated by UI-provided overrides."""

        merged = config.scan.model_dump()
        merged.update(overrides)
        return config.model_copy(update={"scan": ScanConfiguration.model_validate(merged)})
