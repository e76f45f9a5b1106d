from __future__ import annotations

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver import ChromeOptions, FirefoxOptions

from elementhooks.config.schema import BrowserConfig, ScanConfiguration
from elementhooks.core.exceptions import ScanError
from elementhooks.core.metadata import PageSnapshot
from elementhooks.utils.dom_extract import COLLECT_SNAPSHOT_SCRIPT, snapshot_from_payload


class BrowserSession:
    """Creates browser instances using Selenium Manager."""

    def __init__(self, config: BrowserConfig) -> None:
        self.config = config

    def start(self):
        if self.config.name == "chrome":
            options = ChromeOptions()
            if self.config.headless:
                options.add_argument("--headless=new")
            options.add_argument(f"--window-size={self.config.window_size}")
            driver = webdriver.Chrome(options=options)
        elif self.config.name == "firefox":
            options = FirefoxOptions()
            if self.config.headless:
                options.add_argument("-headless")
            driver = webdriver.Firefox(options=options)
        else:
            raise ValueError(f"Unsupported browser: {self.config.name}")
        driver.set_page_load_timeout(self.config.page_load_timeout_seconds)
        driver.implicitly_wait(0)
        return driver


class BrowserDocument:
    """Document source backed by a live WebDriver page."""

    def __init__(self, driver) -> None:
        self.driver = driver

    def snapshot(self, config: ScanConfiguration) -> PageSnapshot:
        try:
            payload = self.driver.execute_script(
                COLLECT_SNAPSHOT_SCRIPT,
                config.selectors,
                config.exclude_selectors,
                config.max_snapshot_nodes,
            )
        except WebDriverException as exc:
            raise ScanError(f"Could not snapshot page: {exc.msg or exc}") from exc
        if not payload:
            raise ScanError("Page snapshot script returned nothing")
        return snapshot_from_payload(payload)
