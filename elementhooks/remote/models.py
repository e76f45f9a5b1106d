from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

HealthStatus = Literal["healthy", "warning", "critical", "unknown"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

MAX_TIMEOUT_SECONDS = 300
MAX_RETRY_COUNT = 10


class WebhookAssignment(BaseModel):
    """Element webhook record as stored remotely."""

    model_config = ConfigDict(extra="ignore")

    id: str
    organization_id: str
    feature_slug: str
    page_path: str
    element_id: str
    element_type: str = "button"
    display_name: str = ""
    endpoint_url: str
    http_method: HttpMethod = "POST"
    payload_template: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: int = 30
    retry_count: int = 3
    rate_limit_per_minute: int = 60
    is_active: bool = True
    health_status: HealthStatus = "unknown"
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_response_time: float | None = None
    last_executed_at: datetime | None = None

    @field_validator("health_status", mode="before")
    @classmethod
    def normalize_health(cls, value: Any) -> str:
        normalized = str(value or "unknown").lower()
        return normalized if normalized in {"healthy", "warning", "critical"} else "unknown"

    @property
    def functional_key(self) -> tuple[str, str, str, str]:
        return (self.organization_id, self.feature_slug, self.page_path, self.element_id)


class CreateAssignmentInput(BaseModel):
    feature_slug: str = Field(min_length=1)
    page_path: str = Field(min_length=1)
    element_id: str = Field(min_length=1)
    endpoint_url: str = Field(min_length=1)
    http_method: HttpMethod = "POST"
    element_type: str = "button"
    display_name: str | None = None
    payload_template: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: int = Field(default=30, gt=0)
    retry_count: int = Field(default=3, ge=0)
    rate_limit_per_minute: int = Field(default=60, gt=0)
    is_active: bool = True

    def to_row(self, organization_id: str, user_id: str | None) -> dict[str, Any]:
        return {
            "organization_id": organization_id,
            "feature_slug": self.feature_slug,
            "page_path": self.page_path,
            "element_id": self.element_id,
            "element_type": self.element_type,
            "display_name": self.display_name or f"{self.feature_slug} - {self.element_id}",
            "endpoint_url": self.endpoint_url,
            "http_method": self.http_method,
            "payload_template": self.payload_template,
            "headers": self.headers,
            "timeout_seconds": min(self.timeout_seconds, MAX_TIMEOUT_SECONDS),
            "retry_count": min(self.retry_count, MAX_RETRY_COUNT),
            "rate_limit_per_minute": self.rate_limit_per_minute,
            "is_active": self.is_active,
            "health_status": "unknown",
            "created_by": user_id,
            "updated_by": user_id,
        }


class AssignmentPatch(BaseModel):
    endpoint_url: str | None = None
    http_method: HttpMethod | None = None
    display_name: str | None = None
    payload_template: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    timeout_seconds: int | None = Field(default=None, gt=0)
    retry_count: int | None = Field(default=None, ge=0)
    rate_limit_per_minute: int | None = Field(default=None, gt=0)
    is_active: bool | None = None

    def to_row(self, user_id: str | None) -> dict[str, Any]:
        row = self.model_dump(exclude_none=True)
        if "timeout_seconds" in row:
            row["timeout_seconds"] = min(row["timeout_seconds"], MAX_TIMEOUT_SECONDS)
        if "retry_count" in row:
            row["retry_count"] = min(row["retry_count"], MAX_RETRY_COUNT)
        row["updated_by"] = user_id
        return row


class SearchFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature_slug: str | None = None
    page_path: str | None = None
    element_id: str | None = None
    is_active: bool | None = None
    health_status: tuple[HealthStatus, ...] = ()
    http_method: HttpMethod | None = None
    search: str | None = None


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=1000)
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class PaginatedAssignments(BaseModel):
    items: list[WebhookAssignment]
    total_count: int
    has_next_page: bool
    has_previous_page: bool
    current_page: int
    total_pages: int

    @classmethod
    def build(cls, items: list[WebhookAssignment], total_count: int, pagination: Pagination) -> PaginatedAssignments:
        total_pages = -(-total_count // pagination.limit) if total_count else 0
        return cls(
            items=items,
            total_count=total_count,
            has_next_page=pagination.page < total_pages,
            has_previous_page=pagination.page > 1,
            current_page=pagination.page,
            total_pages=total_pages,
        )


class ChangeEvent(BaseModel):
    event_type: Literal["insert", "update", "delete"]
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @field_validator("event_type", mode="before")
    @classmethod
    def normalize_event_type(cls, value: Any) -> str:
        return str(value).lower()

    @field_validator("new", "old", mode="before")
    @classmethod
    def empty_as_none(cls, value: Any) -> Any:
        return value or None
