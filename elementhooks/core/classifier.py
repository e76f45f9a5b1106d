from __future__ import annotations

import re

from elementhooks.core.metadata import DomNode, ElementMetadata, ElementType
from elementhooks.utils.hashing import simple_hash

INPUT_TYPE_TABLE = {
    "text": ElementType.INPUT,
    "email": ElementType.INPUT,
    "password": ElementType.INPUT,
    "search": ElementType.INPUT,
    "tel": ElementType.INPUT,
    "url": ElementType.INPUT,
    "number": ElementType.INPUT,
    "date": ElementType.INPUT,
    "time": ElementType.INPUT,
    "datetime-local": ElementType.INPUT,
    "button": ElementType.BUTTON,
    "submit": ElementType.BUTTON,
    "reset": ElementType.BUTTON,
    "checkbox": ElementType.CHECKBOX,
    "radio": ElementType.RADIO,
    "file": ElementType.FILE_UPLOAD,
}

BUTTON_CLASSES = {"btn", "button"}
GENERATED_CLASS_PREFIXES = ("preview-", "webhook-")
INTERACTIVE_TAGS = {"button", "a", "input", "select", "textarea"}
LISTENER_ATTRIBUTES = ("onclick", "onchange", "onsubmit", "onfocus", "onblur")
TEXT_EXCERPT_LIMIT = 100

FEATURE_SLUGS = {
    "admin": "admin",
    "settings": "settings",
    "dashboard": "dashboard",
    "knowledge-base": "knowledge-base",
    "kb": "knowledge-base",
    "users": "users",
    "organizations": "organizations",
    "feedback": "feedback",
}

_WHITESPACE = re.compile(r"\s+")


def classify(node: DomNode) -> ElementType:
    tag = node.tag
    if tag == "button":
        return ElementType.BUTTON
    if tag == "a" and node.has("href"):
        return ElementType.LINK
    if tag == "form":
        return ElementType.FORM
    if tag == "input":
        input_type = (node.get("type") or "text").lower()
        return INPUT_TYPE_TABLE.get(input_type, ElementType.INPUT)
    if tag == "select":
        return ElementType.SELECT
    if tag == "textarea":
        return ElementType.TEXTAREA
    if (
        (node.get("role") or "").lower() == "button"
        or node.has("onclick")
        or node.has_click_handler
        or BUTTON_CLASSES.intersection(node.classes)
    ):
        return ElementType.BUTTON
    if node.has("data-testid") or node.has("data-element-id"):
        return ElementType.CUSTOM
    return ElementType.UNKNOWN


def extract_metadata(node: DomNode, page_path: str = "/") -> ElementMetadata:
    return ElementMetadata(
        tag_name=node.tag,
        class_name=node.get("class") or "",
        element_id=node.get("id") or None,
        text_content=node.text.strip()[:TEXT_EXCERPT_LIMIT],
        href=node.get("href") or None,
        form_action=node.get("action") or None,
        input_type=node.get("type") or None,
        role=node.get("role") or None,
        aria_label=node.get("aria-label") or None,
        feature_slug=infer_feature_slug(page_path),
        page_path=page_path,
        parent_tag=node.parent.tag if node.parent is not None else None,
        children_count=len(node.children),
        is_interactive=_is_interactive(node),
        has_event_listeners=node.has_click_handler or any(node.has(name) for name in LISTENER_ATTRIBUTES),
        custom_attributes=_custom_attributes(node),
    )


def make_id(node: DomNode, metadata: ElementMetadata) -> str:
    """Authored ids and test ids win; everything else falls back to a path hash."""

    element_id = node.get("id")
    if element_id:
        return f"id_{element_id}"
    test_id = node.get("data-testid")
    if test_id:
        return f"testid_{test_id}"
    content = _WHITESPACE.sub("_", metadata.text_content).lower()
    return f"element_{metadata.tag_name}_{simple_hash(dom_path(node) + content)}"


def dom_path(node: DomNode) -> str:
    path: list[str] = []
    current: DomNode | None = node
    while current is not None and current.parent is not None:
        selector = current.tag
        element_id = current.get("id")
        if element_id:
            path.insert(0, f"{selector}#{element_id}")
            break
        classes = [name for name in current.classes if not name.startswith(GENERATED_CLASS_PREFIXES)][:2]
        if classes:
            selector += "." + ".".join(classes)
        same_tag = [sibling for sibling in current.parent.children if sibling.tag == current.tag]
        if len(same_tag) > 1:
            selector += f":nth-child({same_tag.index(current) + 1})"
        path.insert(0, selector)
        current = current.parent
    return " > ".join(path)


def content_hash(node: DomNode) -> str:
    content = "|".join(
        [
            node.tag.upper(),
            node.text.strip(),
            node.get("href") or "",
            node.get("type") or "",
            node.get("class") or "",
        ]
    )
    return simple_hash(content)


def infer_feature_slug(page_path: str) -> str:
    segments = [segment for segment in page_path.split("/") if segment]
    for segment in segments:
        if segment in FEATURE_SLUGS:
            return FEATURE_SLUGS[segment]
    return segments[0] if segments else "dashboard"


def _is_interactive(node: DomNode) -> bool:
    return (
        node.tag in INTERACTIVE_TAGS
        or node.has("onclick")
        or node.has("role")
        or node.has("tabindex")
    )


def _custom_attributes(node: DomNode) -> dict[str, str]:
    return {
        name: value
        for name, value in node.attributes.items()
        if name.startswith(("data-", "aria-")) or name in {"role", "tabindex"}
    }
