from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Sequence

from elementhooks.bulk.engine import BulkOperationResult, summarize


class BulkAuditLogger:
    """Appends one JSON line per bulk run."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.runs_path = self.root / "bulk_operations.jsonl"

    def write(
        self,
        operation: str,
        results: Sequence[BulkOperationResult],
        *,
        organization_id: str | None = None,
        aborted: bool = False,
        duration_ms: int | None = None,
    ) -> dict[str, Any]:
        summary = summarize(results)
        payload = {
            "recorded_at": datetime.now(UTC).isoformat(),
            "operation": operation,
            "organization_id": organization_id,
            "aborted": aborted,
            "duration_ms": duration_ms,
            "total": summary.total,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "skipped": summary.skipped,
            "errors": [
                {"item_id": result.item_id, "error_message": result.error_message}
                for result in results
                if result.status == "error"
            ],
        }
        with self.runs_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")
        return payload

    def read_runs(self) -> list[dict[str, Any]]:
        if not self.runs_path.exists():
            return []
        with self.runs_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]
