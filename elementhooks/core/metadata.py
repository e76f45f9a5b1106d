from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator


class ElementType(str, Enum):
    BUTTON = "button"
    LINK = "link"
    FORM = "form"
    INPUT = "input"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    TEXTAREA = "textarea"
    FILE_UPLOAD = "file-upload"
    CUSTOM = "custom"
    UNKNOWN = "unknown"


class WebhookStatus(str, Enum):
    NONE = "none"
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


@dataclass(slots=True, eq=False)
class DomNode:
    """Read-only element snapshot; the tree root is the scan's root container."""

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: str = ""
    rect: Rect = field(default_factory=Rect)
    styles: dict[str, str] = field(default_factory=dict)
    has_click_handler: bool = False
    parent: DomNode | None = field(default=None, repr=False)
    children: list[DomNode] = field(default_factory=list, repr=False)

    def append(self, child: DomNode) -> DomNode:
        child.parent = self
        self.children.append(child)
        return child

    def get(self, name: str) -> str | None:
        return self.attributes.get(name)

    def has(self, name: str) -> bool:
        return name in self.attributes

    @property
    def classes(self) -> list[str]:
        return [token for token in self.attributes.get("class", "").split() if token]

    def ancestors(self) -> Iterator[DomNode]:
        current = self.parent
        while current is not None:
            yield current
            current = current.parent

    def iter(self) -> Iterator[DomNode]:
        yield self
        for child in self.children:
            yield from child.iter()


@dataclass(slots=True)
class PageSnapshot:
    url: str
    root: DomNode
    candidates: list[DomNode]
    exclusion_roots: list[DomNode] = field(default_factory=list)


@dataclass(slots=True)
class ElementMetadata:
    tag_name: str
    class_name: str = ""
    element_id: str | None = None
    text_content: str = ""
    href: str | None = None
    form_action: str | None = None
    input_type: str | None = None
    role: str | None = None
    aria_label: str | None = None
    feature_slug: str = "dashboard"
    page_path: str = "/"
    parent_tag: str | None = None
    children_count: int = 0
    is_interactive: bool = False
    has_event_listeners: bool = False
    custom_attributes: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class DetectedElement:
    id: str
    element_type: ElementType
    dom_path: str
    content_hash: str
    bounding_rect: Rect
    metadata: ElementMetadata
    webhook_status: WebhookStatus = WebhookStatus.NONE
    webhook_count: int = 0
    is_visible: bool = True
    z_index: int = 0


@dataclass(slots=True)
class ScanResult:
    timestamp: datetime
    page_url: str
    elements_found: int
    elements_with_webhooks: int
    scan_duration_ms: int
    elements: list[DetectedElement] = field(default_factory=list)


@dataclass(slots=True)
class ScanDelta:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


@dataclass(slots=True)
class MutationRecord:
    type: str
    target_tag: str = ""
    added_count: int = 0
    removed_count: int = 0
    attribute_name: str = ""
    inside_tool_ui: bool = False
    timestamp: float = 0.0
