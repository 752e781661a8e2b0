"""
Headless-browser fallback for pages the HTTP fetcher cannot read.

The archive mirror is tried first; when a captcha frame shows up the browser waits for it
to be solved (by a person or a solver extension in the persistent profile).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

ARCHIVE_MIRROR = "https://archive.ph/"
CAPTCHA_SELECTOR = 'iframe[src*="recaptcha"]'
CAPTCHA_TIMEOUT_MS = 180_000
PAGE_TIMEOUT_MS = 10_000
VIEWPORT = {"width": 1024, "height": 600}


class BrowserFetcher:
    """Lazily started Playwright session; `browse` never raises."""

    def __init__(
        self,
        enabled: bool = True,
        headless: bool = True,
        profile_dir: Path | None = None,
        executable_path: str | None = None,
    ) -> None:
        self.enabled = enabled
        self.headless = headless
        self.profile_dir = profile_dir or Path(
            os.getenv("BROWSER_PROFILE_DIR", str(Path.home() / ".config" / "news-resolver" / "playwright"))
        )
        self.executable_path = executable_path or os.getenv("BROWSER_EXECUTABLE_PATH") or None
        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None

    def _ensure_page(self) -> Any:
        if self._page is not None:
            return self._page
        from playwright.sync_api import sync_playwright

        self._playwright = sync_playwright().start()
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self._context = self._playwright.chromium.launch_persistent_context(
            str(self.profile_dir),
            headless=self.headless,
            executable_path=self.executable_path,
            viewport=VIEWPORT,
        )
        self._page = self._context.new_page()
        return self._page

    def browse(self, url: str) -> str | None:
        if not self.enabled or not url:
            return None
        try:
            page = self._ensure_page()
            html = self._browse_archive(page, url)
            if not html:
                html = self._browse_source(page, url)
            return html or None
        except Exception:  # noqa: BLE001
            LOGGER.warning("article browsing failed for %s", url, exc_info=True)
            return None

    def _browse_archive(self, page: Any, url: str) -> str:
        LOGGER.info("Browsing archive...")
        page.goto(f"{ARCHIVE_MIRROR}{url.split('?')[0]}", wait_until="load")
        if page.query_selector(CAPTCHA_SELECTOR):
            LOGGER.info("waiting for captcha to be solved...")
            page.wait_for_selector("#CONTENT", timeout=CAPTCHA_TIMEOUT_MS)
            LOGGER.info("captcha solved")
        versions = page.query_selector_all(".TEXT-BLOCK > a")
        if versions:
            LOGGER.info("going to the newest version...")
            versions[0].click()
            page.wait_for_load_state("load")
        return page.evaluate("() => [...document.querySelectorAll('.body')].map(x => x.innerHTML).join('')") or ""

    def _browse_source(self, page: Any, url: str) -> str:
        LOGGER.info("browsing source...")
        try:
            page.goto(url, wait_until="load", timeout=PAGE_TIMEOUT_MS)
        except Exception:  # noqa: BLE001
            LOGGER.debug("page load did not settle for %s", url, exc_info=True)
        try:
            page.wait_for_load_state("networkidle", timeout=PAGE_TIMEOUT_MS)
        except Exception:  # noqa: BLE001
            LOGGER.debug("network did not go idle for %s", url, exc_info=True)
        return page.evaluate("() => document.body.innerHTML") or ""

    def close(self) -> None:
        try:
            if self._context:
                self._context.close()
            if self._playwright:
                self._playwright.stop()
        except Exception:  # noqa: BLE001
            LOGGER.debug("Failed to close Playwright browser cleanly", exc_info=True)
        finally:
            self._page = None
            self._context = None
            self._playwright = None
