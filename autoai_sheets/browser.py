"""Browser windows backing the window pool."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .config import BrowserConfig

LOGGER = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30000


class BrowserWindow:
    """One page dedicated to one AI type while it occupies a pool slot."""

    def __init__(self, page: Page, ai_type: str, slot: int, home_url: str) -> None:
        self.page = page
        self.ai_type = ai_type
        self.slot = slot
        self.home_url = home_url

    @property
    def url(self) -> str:
        return self.page.url

    async def navigate(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)

    async def reset(self) -> None:
        """Start a fresh conversation before the window is reused."""

        await self.navigate(self.home_url)

    async def close(self) -> None:
        if not self.page.is_closed():
            await self.page.close()


class PlaywrightWindowFactory:
    """Opens pages in a CDP-attached Chrome, a persistent profile or a fresh Chromium."""

    def __init__(self, conf: BrowserConfig) -> None:
        self._conf = conf
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()

    async def _ensure_context(self) -> BrowserContext:
        async with self._lock:
            if self._context is not None:
                return self._context

            self._playwright = await async_playwright().start()
            chromium = self._playwright.chromium
            if self._conf.cdp_url:
                LOGGER.info("Connecting to Chrome over CDP at %s", self._conf.cdp_url)
                self._browser = await chromium.connect_over_cdp(self._conf.cdp_url)
                contexts = self._browser.contexts
                self._context = contexts[0] if contexts else await self._browser.new_context()
            elif self._conf.user_data_dir:
                LOGGER.info("Launching Chromium with profile %s", self._conf.user_data_dir)
                self._context = await chromium.launch_persistent_context(
                    str(self._conf.user_data_dir), headless=self._conf.headless
                )
            else:
                LOGGER.info("Launching a fresh Chromium (no logged-in profile configured)")
                self._browser = await chromium.launch(headless=self._conf.headless)
                self._context = await self._browser.new_context()
            return self._context

    async def open(self, ai_type: str, slot: int) -> BrowserWindow:
        target = self._conf.targets.get(ai_type)
        if target is None:
            raise ValueError(f"No browser target configured for AI type '{ai_type}'")

        context = await self._ensure_context()
        page = await context.new_page()
        window = BrowserWindow(page, ai_type, slot, target.base_url)
        try:
            await window.navigate(target.base_url)
        except Exception:
            await window.close()
            raise
        LOGGER.debug("Opened %s window in slot %s", ai_type, slot)
        return window

    async def close(self) -> None:
        async with self._lock:
            # Pages of an attached Chrome belong to the user; only our own browser is closed.
            if self._context is not None and not self._conf.cdp_url:
                await self._context.close()
            if self._browser is not None and not self._conf.cdp_url:
                await self._browser.close()
            if self._playwright is not None:
                await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None
