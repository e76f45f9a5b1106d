from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

DEFAULT_SELECTORS = [
    "button",
    'input[type="button"]',
    'input[type="submit"]',
    'input[type="reset"]',
    "a[href]",
    "form",
    'input[type="text"]',
    'input[type="email"]',
    'input[type="password"]',
    'input[type="search"]',
    'input[type="tel"]',
    'input[type="url"]',
    'input[type="number"]',
    'input[type="date"]',
    'input[type="time"]',
    'input[type="datetime-local"]',
    'input[type="file"]',
    'input[type="checkbox"]',
    'input[type="radio"]',
    "select",
    "textarea",
    '[role="button"]',
    "[onclick]",
    "[data-testid]",
    ".btn",
    ".button",
]

DEFAULT_EXCLUDE_SELECTORS = [
    "script",
    "style",
    "meta",
    "link",
    "title",
    ".preview-overlay",
    ".preview-indicator",
    ".preview-panel",
    "[data-preview-ignore]",
]

DEFAULT_TOOL_UI_SELECTORS = [
    ".preview-overlay",
    ".preview-indicator",
    ".preview-panel",
    "[data-preview-system]",
    "[data-webhook-overlay]",
]

TIER_NAMES = ("static", "semi_static", "dynamic", "realtime")


class MinSize(BaseModel):
    width: float = 10
    height: float = 10


class ScanConfiguration(BaseModel):
    selectors: list[str] = Field(default_factory=lambda: list(DEFAULT_SELECTORS))
    exclude_selectors: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_SELECTORS))
    include_hidden: bool = False
    include_disabled: bool = False
    min_size: MinSize = Field(default_factory=MinSize)
    max_elements: int = Field(default=1000, gt=0)
    status_lookup_timeout_seconds: float = Field(default=2.0, gt=0)
    max_snapshot_nodes: int = Field(default=5000, gt=0)

    @field_validator("selectors")
    @classmethod
    def validate_selectors(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item.strip()]
        if not cleaned:
            raise ValueError("At least one candidate selector is required")
        return cleaned


class WatcherConfig(BaseModel):
    debounce_seconds: float = Field(default=0.3, ge=0)
    poll_interval_seconds: float = Field(default=0.5, gt=0)
    tracked_attributes: list[str] = Field(
        default_factory=lambda: ["class", "id", "style", "hidden", "disabled"]
    )
    tool_ui_selectors: list[str] = Field(default_factory=lambda: list(DEFAULT_TOOL_UI_SELECTORS))


class RemoteConfig(BaseModel):
    url: str
    api_key: str
    organization_id: str
    schema_name: str = "public"
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value.rstrip("/")


class CacheTier(BaseModel):
    stale_seconds: float = Field(ge=0)
    gc_seconds: float = Field(gt=0)
    refetch_interval_seconds: float | None = None


def _default_tiers() -> dict[str, CacheTier]:
    return {
        "static": CacheTier(stale_seconds=30 * 60, gc_seconds=2 * 60 * 60),
        "semi_static": CacheTier(stale_seconds=20 * 60, gc_seconds=60 * 60),
        "dynamic": CacheTier(stale_seconds=5 * 60, gc_seconds=20 * 60),
        "realtime": CacheTier(stale_seconds=60, gc_seconds=10 * 60, refetch_interval_seconds=30),
    }


class CacheConfig(BaseModel):
    tiers: dict[str, CacheTier] = Field(default_factory=_default_tiers)
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    persist_path: str | None = None
    persist_max_age_seconds: float = Field(default=24 * 60 * 60, gt=0)

    @field_validator("tiers")
    @classmethod
    def validate_tiers(cls, value: dict[str, CacheTier]) -> dict[str, CacheTier]:
        unknown = [name for name in value if name not in TIER_NAMES]
        if unknown:
            raise ValueError(f"Unknown cache tiers: {', '.join(unknown)}")
        merged = _default_tiers()
        merged.update(value)
        return merged


class BulkConfig(BaseModel):
    inter_item_delay_seconds: float = Field(default=0.05, ge=0)
    max_consecutive_transport_failures: int = Field(default=3, gt=0)


class BrowserConfig(BaseModel):
    name: str = "chrome"
    headless: bool = True
    page_load_timeout_seconds: int = 10
    window_size: str = "1440,1200"

    @field_validator("name")
    @classmethod
    def validate_browser(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"chrome", "firefox"}:
            raise ValueError(f"Unsupported browser: {value}")
        return normalized


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str | None = None
    retention_days: int = 14
    stdout: bool = False


class AppConfig(BaseModel):
    remote: RemoteConfig
    scan: ScanConfiguration = Field(default_factory=ScanConfiguration)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    artifacts_root: str = "artifacts"
