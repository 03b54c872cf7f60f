"""
Shared headless Chromium used by the page endpoints.

The browser is launched on first use and reused; every request gets its
own context, which is closed when the request is done.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from renderhub.config import DEFAULT_USER_AGENT, MOBILE_USER_AGENT, settings
from renderhub.models import BrowserOptions, Cookie

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

SCROLL_SCRIPT = """
async () => {
  await new Promise(resolve => {
    let total = 0;
    const timer = setInterval(() => {
      window.scrollBy(0, 400);
      total += 400;
      if (total >= document.body.scrollHeight || total > 10000) {
        clearInterval(timer);
        resolve();
      }
    }, 100);
    setTimeout(() => { clearInterval(timer); resolve(); }, 4000);
  });
  window.scrollTo(0, 0);
}
"""


def _cookie_payload(cookies: list[Cookie]) -> list[dict[str, Any]]:
    payload = []
    for c in cookies:
        entry: dict[str, Any] = {
            "name": c.name,
            "value": c.value,
            "expires": c.expires,
            "httpOnly": c.http_only,
            "secure": c.secure,
            "sameSite": c.same_site,
        }
        if c.url:
            entry["url"] = c.url
        else:
            entry["domain"] = c.domain
            entry["path"] = c.path
        payload.append(entry)
    return payload


class BrowserManager:
    def __init__(self):
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def get_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=settings.BROWSER_HEADLESS, args=LAUNCH_ARGS
                )
                logger.info("Launched Chromium %s", self._browser.version)
            return self._browser

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    @asynccontextmanager
    async def open_page(self, url: str, options: BrowserOptions,
                        cookies: list[Cookie]) -> AsyncIterator[tuple[Page, dict[str, int]]]:
        """Navigate to ``url`` in a fresh context and yield the loaded page with step timings."""
        browser = await self.get_browser()
        default_agent = MOBILE_USER_AGENT if options.is_mobile else DEFAULT_USER_AGENT
        context_args: dict[str, Any] = {
            "user_agent": options.user_agent or default_agent,
            "is_mobile": options.is_mobile,
        }
        if options.viewport is not None:
            context_args["viewport"] = {"width": options.viewport.width, "height": options.viewport.height}
        context = await browser.new_context(**context_args)
        try:
            if cookies:
                await context.add_cookies(_cookie_payload(cookies))
            page = await context.new_page()
            stats = await self._load(page, url, options)
            yield page, stats
        finally:
            await context.close()

    async def _load(self, page: Page, url: str, options: BrowserOptions) -> dict[str, int]:
        stats = {"navigate": 0, "scroll": 0}
        mark = time.monotonic()
        await page.goto(url, wait_until="commit", timeout=settings.NAVIGATION_TIMEOUT_MS)
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=10000)
        except PlaywrightTimeoutError:
            logger.info("domcontentloaded not reached for %s, continuing", url)
        selector = options.wait_for_selector or "body"
        try:
            await page.wait_for_selector(selector, state="attached", timeout=5000)
        except PlaywrightTimeoutError:
            logger.warning('Selector "%s" not found on %s', selector, url)
        stats["navigate"] = round((time.monotonic() - mark) * 1000)

        mark = time.monotonic()
        if options.scroll_to_load:
            await page.evaluate(SCROLL_SCRIPT)
        if options.wait_time:
            await page.wait_for_timeout(options.wait_time)
        stats["scroll"] = round((time.monotonic() - mark) * 1000)
        return stats
