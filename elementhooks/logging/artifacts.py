from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any


class ArtifactManager:
    """Writes downloadable export documents under one artifacts root."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.export_root = self.root / "exports"
        self.export_root.mkdir(parents=True, exist_ok=True)

    def write_export(self, document: dict[str, Any], epoch_ms: int | None = None) -> Path:
        stamp = epoch_ms if epoch_ms is not None else int(time.time() * 1000)
        path = self.export_root / f"webhook-export-{stamp}.json"
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path
