from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Literal

from elementhooks.remote.models import WebhookAssignment

EnabledFilter = Literal["all", "enabled", "disabled"]
PerformanceTier = Literal["all", "high", "medium", "low"]

HIGH_PERFORMANCE = 7.0
MEDIUM_PERFORMANCE = 4.0


@dataclass(slots=True)
class BulkOperationItem:
    id: str
    name: str
    status: str
    is_enabled: bool
    element_id: str
    feature_slug: str
    endpoint_url: str | None = None
    last_execution: datetime | None = None
    performance_score: float | None = None
    success_rate: float | None = None

    @classmethod
    def from_assignment(cls, assignment: WebhookAssignment) -> BulkOperationItem:
        success_rate = None
        if assignment.total_executions:
            success_rate = assignment.successful_executions * 100 / assignment.total_executions
        return cls(
            id=assignment.id,
            name=assignment.display_name or assignment.id,
            status=assignment.health_status,
            is_enabled=assignment.is_active,
            element_id=assignment.element_id,
            feature_slug=assignment.feature_slug,
            endpoint_url=assignment.endpoint_url,
            last_execution=assignment.last_executed_at,
            performance_score=performance_score(success_rate, assignment.average_response_time),
            success_rate=success_rate,
        )


def performance_score(success_rate: float | None, average_response_ms: float | None) -> float | None:
    """0-10 score: up to 7 points for reliability and 3 for latency."""

    if success_rate is None:
        return None
    score = success_rate * 7 / 100
    if average_response_ms is not None:
        if average_response_ms <= 500:
            score += 3
        elif average_response_ms <= 1000:
            score += 2
        elif average_response_ms <= 3000:
            score += 1
    return round(score, 1)


@dataclass(slots=True)
class BulkFilter:
    search: str = ""
    status: list[str] = field(default_factory=list)
    feature: list[str] = field(default_factory=list)
    enabled: EnabledFilter = "all"
    performance: PerformanceTier = "all"


def filter_items(items: Iterable[BulkOperationItem], criteria: BulkFilter) -> list[BulkOperationItem]:
    query = criteria.search.strip().lower()
    matched = []
    for item in items:
        if query and query not in item.name.lower() and query not in item.feature_slug.lower():
            continue
        if criteria.status and item.status not in criteria.status:
            continue
        if criteria.feature and item.feature_slug not in criteria.feature:
            continue
        if criteria.enabled == "enabled" and not item.is_enabled:
            continue
        if criteria.enabled == "disabled" and item.is_enabled:
            continue
        if not _in_performance_tier(item.performance_score, criteria.performance):
            continue
        matched.append(item)
    return matched


def _in_performance_tier(score: float | None, tier: PerformanceTier) -> bool:
    # Unscored items are never hidden by the performance filter.
    if tier == "all" or not score:
        return True
    if tier == "high":
        return score >= HIGH_PERFORMANCE
    if tier == "medium":
        return MEDIUM_PERFORMANCE <= score < HIGH_PERFORMANCE
    return score < MEDIUM_PERFORMANCE


def select_by(items: Iterable[BulkOperationItem], field_name: str, value: Any) -> list[BulkOperationItem]:
    """Quick selection helper, e.g. every item with ``status == "critical"``."""

    return [item for item in items if getattr(item, field_name) == value]
