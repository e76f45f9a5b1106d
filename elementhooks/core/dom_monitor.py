from __future__ import annotations

from typing import Any

from elementhooks.core.metadata import MutationRecord

INSTALL_MONITOR_SCRIPT = r"""
const [trackedAttributes, toolSelectors] = arguments;
if (!window.__elementhooks_events__) {
  window.__elementhooks_events__ = [];
}

if (!window.__elementhooks_observer__) {
  const insideToolUi = (target) => {
    const element = target instanceof Element ? target : target && target.parentElement;
    if (!element) return false;
    for (const selector of toolSelectors) {
      try {
        if (element.closest(selector)) return true;
      } catch (error) {
        continue;
      }
    }
    return false;
  };

  const observer = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      window.__elementhooks_events__.push({
        type: mutation.type,
        targetTag: mutation.target && mutation.target.tagName ? mutation.target.tagName.toLowerCase() : "",
        addedCount: mutation.addedNodes ? mutation.addedNodes.length : 0,
        removedCount: mutation.removedNodes ? mutation.removedNodes.length : 0,
        attributeName: mutation.attributeName || "",
        insideToolUi: insideToolUi(mutation.target),
        timestamp: Date.now(),
      });
    }
    if (window.__elementhooks_events__.length > 500) {
      window.__elementhooks_events__ = window.__elementhooks_events__.slice(-500);
    }
  });
  observer.observe(document.body || document.documentElement, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: trackedAttributes,
  });
  window.__elementhooks_observer__ = observer;
}
"""

UNINSTALL_MONITOR_SCRIPT = """
if (window.__elementhooks_observer__) {
  window.__elementhooks_observer__.disconnect();
  window.__elementhooks_observer__ = null;
}
window.__elementhooks_events__ = [];
"""

FLUSH_EVENTS_SCRIPT = """
const events = window.__elementhooks_events__ || [];
window.__elementhooks_events__ = [];
return events;
"""


class DomMonitor:
    """Installs and reads the browser-side mutation buffer."""

    def __init__(self, tracked_attributes: list[str], tool_ui_selectors: list[str]) -> None:
        self.tracked_attributes = tracked_attributes
        self.tool_ui_selectors = tool_ui_selectors

    def install(self, driver) -> None:
        driver.execute_script(INSTALL_MONITOR_SCRIPT, self.tracked_attributes, self.tool_ui_selectors)

    def uninstall(self, driver) -> None:
        driver.execute_script(UNINSTALL_MONITOR_SCRIPT)

    def flush_events(self, driver) -> list[MutationRecord]:
        return [parse_event(item) for item in driver.execute_script(FLUSH_EVENTS_SCRIPT) or []]


class BrowserMutationSource:
    """Binds a DomMonitor to one driver so the watcher can poll it."""

    def __init__(self, driver, monitor: DomMonitor) -> None:
        self.driver = driver
        self.monitor = monitor

    def install(self) -> None:
        self.monitor.install(self.driver)

    def uninstall(self) -> None:
        self.monitor.uninstall(self.driver)

    def flush_events(self) -> list[MutationRecord]:
        return self.monitor.flush_events(self.driver)


def parse_event(item: dict[str, Any]) -> MutationRecord:
    return MutationRecord(
        type=item.get("type", ""),
        target_tag=item.get("targetTag", ""),
        added_count=int(item.get("addedCount", 0)),
        removed_count=int(item.get("removedCount", 0)),
        attribute_name=item.get("attributeName", ""),
        inside_tool_ui=bool(item.get("insideToolUi", False)),
        timestamp=float(item.get("timestamp", 0)) / 1000.0,
    )
