from __future__ import annotations

import re
from typing import Iterable

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from elementhooks.config.schema import ScanConfiguration
from elementhooks.core.metadata import DomNode, PageSnapshot, Rect
from elementhooks.logging.logger import get_logger

logger = get_logger(__name__)

_PX_VALUE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(px)?\s*$")

INLINE_TAGS = {"a", "abbr", "b", "code", "em", "i", "label", "small", "span", "strong"}


class HtmlDocument:
    """Document source over static markup, with layout approximated from inline styles.

    Elements hidden by the ``hidden`` attribute or ``display: none`` on themselves
    or an ancestor get a zero rect. Inline elements and elements without an
    inline ``width``/``height`` get ``default_size``.
    """

    def __init__(
        self,
        markup: str,
        url: str = "http://localhost/",
        default_size: tuple[float, float] = (120.0, 32.0),
        parser: str = "html.parser",
    ) -> None:
        self.url = url
        self.default_size = default_size
        self.parser = parser
        self.set_markup(markup)

    def set_markup(self, markup: str) -> None:
        self.soup = BeautifulSoup(markup, self.parser)

    def snapshot(self, config: ScanConfiguration) -> PageSnapshot:
        container = self.soup.body or self.soup
        index: dict[int, DomNode] = {}
        root = self._convert(container, index, hidden=False, visibility="visible")
        root.tag = "body"
        return PageSnapshot(
            url=self.url,
            root=root,
            candidates=self._select(container, config.selectors, index),
            exclusion_roots=self._select(container, config.exclude_selectors, index),
        )

    def _convert(self, tag: Tag, index: dict[int, DomNode], *, hidden: bool, visibility: str) -> DomNode:
        attributes = {
            name: " ".join(value) if isinstance(value, list) else str(value)
            for name, value in tag.attrs.items()
        }
        tag_name = (tag.name or "").lower()
        inline = parse_inline_style(attributes.get("style", ""))
        display = inline.get("display", "inline" if tag_name in INLINE_TAGS else "block")
        hidden = hidden or "hidden" in attributes or display == "none"
        visibility = inline.get("visibility", visibility)
        if hidden:
            rect = Rect()
        elif display == "inline":
            # Width and height do not apply to non-replaced inline boxes.
            rect = Rect(width=self.default_size[0], height=self.default_size[1])
        else:
            rect = Rect(
                width=_px(inline.get("width"), self.default_size[0]),
                height=_px(inline.get("height"), self.default_size[1]),
            )
        node = DomNode(
            tag=tag_name,
            attributes=attributes,
            text=tag.get_text(),
            rect=rect,
            styles={
                "display": display,
                "visibility": visibility,
                "opacity": inline.get("opacity", "1"),
                "z-index": inline.get("z-index", "auto"),
            },
        )
        index[id(tag)] = node
        for child in tag.children:
            if isinstance(child, Tag):
                node.append(self._convert(child, index, hidden=hidden, visibility=visibility))
        return node

    @staticmethod
    def _select(container: Tag, selectors: Iterable[str], index: dict[int, DomNode]) -> list[DomNode]:
        seen: set[int] = set()
        ordered: list[DomNode] = []
        for selector in selectors:
            try:
                matches = container.select(selector)
            except SelectorSyntaxError as exc:
                logger.warning("Invalid selector %r skipped: %s", selector, exc)
                continue
            for match in matches:
                key = id(match)
                if key in seen or key not in index:
                    continue
                seen.add(key)
                ordered.append(index[key])
        return ordered


def parse_inline_style(style: str) -> dict[str, str]:
    declarations: dict[str, str] = {}
    for chunk in style.split(";"):
        name, _, value = chunk.partition(":")
        if name.strip() and value.strip():
            declarations[name.strip().lower()] = value.strip().lower()
    return declarations


def _px(value: str | None, default: float) -> float:
    if value is None:
        return default
    match = _PX_VALUE.match(value)
    if not match:
        return default
    return float(match.group(1))
