from __future__ import annotations

from typing import Any

from elementhooks.core.metadata import DomNode, PageSnapshot, Rect

COLLECT_SNAPSHOT_SCRIPT = r"""
const [selectors, excludeSelectors, maxNodes] = arguments;
const root = document.body || document.documentElement;
const indexOf = new Map();
let count = 0;

const serialize = (node) => {
  if (count >= maxNodes) return null;
  const idx = count++;
  indexOf.set(node, idx);
  const rect = node.getBoundingClientRect();
  const style = window.getComputedStyle(node);
  const item = {
    idx,
    tag: node.tagName.toLowerCase(),
    attributes: Array.from(node.attributes).reduce((acc, attr) => {
      acc[attr.name] = attr.value;
      return acc;
    }, {}),
    text: (node.textContent || "").trim().slice(0, 500),
    rect: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
    styles: {
      display: style.display,
      visibility: style.visibility,
      opacity: style.opacity,
      zIndex: style.zIndex,
    },
    clickHandler: typeof node.onclick === "function",
    children: [],
  };
  for (const child of node.children) {
    const serialized = serialize(child);
    if (serialized) item.children.push(serialized);
  }
  return item;
};

const collect = (list) => {
  const seen = new Set();
  const order = [];
  for (const selector of list) {
    let matches = [];
    try {
      matches = root.querySelectorAll(selector);
    } catch (error) {
      continue;
    }
    for (const node of matches) {
      const idx = indexOf.get(node);
      if (idx === undefined || seen.has(idx)) continue;
      seen.add(idx);
      order.push(idx);
    }
  }
  return order;
};

const tree = serialize(root);
return {
  url: window.location.href,
  root: tree,
  candidates: collect(selectors),
  exclusions: collect(excludeSelectors),
};
"""


def build_tree(raw: dict[str, Any], index: dict[int, DomNode] | None = None) -> DomNode:
    """Rebuilds a DomNode tree from the serialized browser payload."""

    index = {} if index is None else index
    rect = raw.get("rect") or {}
    styles = raw.get("styles") or {}
    node = DomNode(
        tag=str(raw.get("tag", "")).lower(),
        attributes=dict(raw.get("attributes") or {}),
        text=raw.get("text") or "",
        rect=Rect(
            x=float(rect.get("x", 0.0)),
            y=float(rect.get("y", 0.0)),
            width=float(rect.get("width", 0.0)),
            height=float(rect.get("height", 0.0)),
        ),
        styles={
            "display": styles.get("display", ""),
            "visibility": styles.get("visibility", ""),
            "opacity": str(styles.get("opacity", "1")),
            "z-index": str(styles.get("zIndex", "auto")),
        },
        has_click_handler=bool(raw.get("clickHandler")),
    )
    if "idx" in raw:
        index[int(raw["idx"])] = node
    for child in raw.get("children") or []:
        node.append(build_tree(child, index))
    return node


def snapshot_from_payload(payload: dict[str, Any]) -> PageSnapshot:
    index: dict[int, DomNode] = {}
    root = build_tree(payload.get("root") or {"tag": "body"}, index)
    return PageSnapshot(
        url=payload.get("url", ""),
        root=root,
        candidates=[index[idx] for idx in payload.get("candidates", []) if idx in index],
        exclusion_roots=[index[idx] for idx in payload.get("exclusions", []) if idx in index],
    )
