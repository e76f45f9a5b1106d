from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import quote

import pytest
from selenium.common.exceptions import WebDriverException

from elementhooks.config.schema import BrowserConfig, WatcherConfig
from elementhooks.core.browser import BrowserDocument, BrowserSession
from elementhooks.core.dom_monitor import BrowserMutationSource, DomMonitor
from elementhooks.core.scanner import ElementScanner
from elementhooks.core.watcher import MutationWatcher
from tests.helpers import FIXTURE_PAGE


@contextmanager
def browser(name: str = "chrome") -> Iterator[object]:
    try:
        driver = BrowserSession(BrowserConfig(name=name)).start()
    except WebDriverException as exc:
        pytest.skip(f"WebDriver could not start for {name}: {exc}")
    try:
        yield driver
    finally:
        driver.quit()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_live_page_scan_matches_fixture_expectations():
    with browser() as driver:
        driver.get("data:text/html;charset=utf-8," + quote(FIXTURE_PAGE))
        result = await ElementScanner(BrowserDocument(driver)).scan()

    assert result.elements_found == 2
    assert "id_submit-btn" in {element.id for element in result.elements}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_live_dom_mutation_triggers_rescan():
    with browser() as driver:
        driver.get("data:text/html;charset=utf-8," + quote(FIXTURE_PAGE))
        config = WatcherConfig(debounce_seconds=0.05, poll_interval_seconds=0.05)
        source = BrowserMutationSource(driver, DomMonitor(config.tracked_attributes, config.tool_ui_selectors))
        watcher = MutationWatcher(ElementScanner(BrowserDocument(driver)), config, mutation_source=source)
        results = []
        watcher.start_monitoring(results.append)
        for _ in range(100):
            if results:
                break
            await asyncio.sleep(0.05)

        driver.execute_script(
            "const b = document.createElement('button'); b.id = 'late'; b.textContent = 'Late';"
            "document.querySelector('main').appendChild(b);"
        )
        for _ in range(100):
            if len(results) >= 2:
                break
            await asyncio.sleep(0.05)
        watcher.stop_monitoring()

    assert len(results) >= 2
    assert "id_late" in {element.id for element in results[-1].elements}
