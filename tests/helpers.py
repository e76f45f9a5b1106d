from __future__ import annotations

import asyncio
from collections import defaultdict
from copy import deepcopy
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Iterable

from elementhooks.remote.client import Filter, RemoteDataClient, SelectResult

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)

FIXTURE_PAGE = """
<html>
  <body>
    <main>
      <button id="submit-btn">Send</button>
      <input type="text" hidden>
      <a href="/x" style="width:0;height:0">Details</a>
    </main>
  </body>
</html>
"""


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


class FakeRemoteClient(RemoteDataClient):
    """In-memory stand-in for the remote tables used by the store."""

    def __init__(self, user_id: str = "user-1") -> None:
        self.user_id = user_id
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, Exception] = {}
        self.select_gate: asyncio.Event | None = None
        self.on_update: Callable[[dict[str, Any]], None] | None = None
        self.closed = False
        self._sequence = 0

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        self._sequence += 1
        record = {
            "id": f"wh-{self._sequence}",
            "created_at": (BASE_TIME + timedelta(seconds=self._sequence)).isoformat(),
            **row,
        }
        self.tables[table].append(record)
        return deepcopy(record)

    def fail_for(self, row_id: str, error: Exception) -> None:
        self.failures[row_id] = error

    def count(self, method: str, table: str | None = None) -> int:
        return sum(1 for call in self.calls if call[0] == method and (table is None or call[1] == table))

    async def select(
        self,
        table: str,
        *,
        filters: Iterable[Filter] = (),
        columns: str = "*",
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        count: bool = False,
    ) -> SelectResult:
        self.calls.append(("select", table))
        if self.select_gate is not None:
            await self.select_gate.wait()
        rows = [row for row in self.tables[table] if _matches(row, filters)]
        if order is not None:
            column, ascending = order
            rows.sort(key=lambda row: str(row.get(column) or ""), reverse=not ascending)
        total = len(rows)
        start = offset or 0
        rows = rows[start : start + limit] if limit is not None else rows[start:]
        return SelectResult(rows=deepcopy(rows), count=total if count else None)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("insert", table))
        return self.seed(table, **row)

    async def update(self, table: str, filters: Iterable[Filter], values: dict[str, Any]) -> list[dict[str, Any]]:
        filters = list(filters)
        self.calls.append(("update", table))
        self._raise_if_failing(filters)
        updated = []
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(values)
                if self.on_update is not None:
                    self.on_update(row)
                updated.append(deepcopy(row))
        return updated

    async def delete(self, table: str, filters: Iterable[Filter]) -> list[dict[str, Any]]:
        filters = list(filters)
        self.calls.append(("delete", table))
        self._raise_if_failing(filters)
        removed = [row for row in self.tables[table] if _matches(row, filters)]
        self.tables[table] = [row for row in self.tables[table] if not _matches(row, filters)]
        return deepcopy(removed)

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        self.calls.append(("rpc", function))
        self._raise_if_failing([("id", "eq", params.get("p_webhook_id"))])
        self.rpc_calls.append((function, params))
        return {"success": True}

    async def current_user_id(self) -> str | None:
        return self.user_id

    async def aclose(self) -> None:
        self.closed = True

    def _raise_if_failing(self, filters: list[Filter]) -> None:
        for column, operator, value in filters:
            if column in ("id", "webhook_id") and operator == "eq" and value in self.failures:
                raise self.failures[value]


def assignment_row(**overrides: Any) -> dict[str, Any]:
    row = {
        "organization_id": "org-1",
        "feature_slug": "dashboard",
        "page_path": "/dashboard",
        "element_id": "id_submit-btn",
        "display_name": "dashboard - id_submit-btn",
        "endpoint_url": "https://hooks.example.com/submit",
        "http_method": "POST",
        "is_active": True,
        "health_status": "healthy",
    }
    row.update(overrides)
    return row


def _matches(row: dict[str, Any], filters: Iterable[Filter]) -> bool:
    for column, operator, value in filters:
        if operator == "eq" and row.get(column) != value:
            return False
        if operator == "in" and row.get(column) not in value:
            return False
        if operator == "or" and not _matches_any(row, value):
            return False
    return True


def _matches_any(row: dict[str, Any], expression: str) -> bool:
    for clause in expression.split(","):
        column, _, pattern = clause.split(".", 2)
        term = pattern.strip("*").lower()
        if term in str(row.get(column) or "").lower():
            return True
    return False

