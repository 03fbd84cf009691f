"""Selector-driven automation of an AI chat page through Playwright."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from playwright.async_api import Page, TimeoutError as PWTimeout

from .automation import AIAutomation
from .catalog import CatalogEntry
from .config import AutomationTarget, WaitConfig
from .waiting import CancelToken

LOGGER = logging.getLogger(__name__)

# Generic placeholders; real sites need selectors from the configuration.
DEFAULT_SELECTORS: Dict[str, str] = {
    "input_box": "textarea, [contenteditable='true']",
    "send_button": "button[type='submit']",
    "stop_button": "button[aria-label*='Stop'], button[aria-label*='停止']",
    "response": "[data-role='response']",
    "model_menu": "[data-role='model-menu']",
    "function_menu": "[data-role='function-menu']",
    "menu_item": "[role='menuitem'], [role='option']",
}


def _match_catalog(name: str, entries: List[CatalogEntry]) -> Optional[str]:
    wanted = name.strip().lower()
    for entry in entries:
        if entry.name.lower() == wanted:
            return entry.name
    for entry in entries:
        if wanted in entry.name.lower() or entry.name.lower() in wanted:
            return entry.name
    return None


class PlaywrightAutomation(AIAutomation):
    def __init__(
        self,
        page: Page,
        target: AutomationTarget,
        ai_type: str,
        waits: WaitConfig,
        token: CancelToken,
    ) -> None:
        super().__init__(ai_type, waits, token)
        self._page = page
        self._target = target
        self._selectors = {**DEFAULT_SELECTORS, **target.selectors}
        self._timeout_ms = int(waits.element_timeout_s * 1000)

    def _selector(self, role: str) -> str:
        return self._selectors[role]

    async def _pick_from_menu(self, menu_role: str, label: str) -> bool:
        page = self._page
        try:
            await page.locator(self._selector(menu_role)).first.click(timeout=self._timeout_ms)
            option = page.locator(self._selector("menu_item")).filter(has_text=label).first
            await option.wait_for(state="visible", timeout=self._timeout_ms)
            await option.click(timeout=self._timeout_ms)
            return True
        except PWTimeout:
            LOGGER.debug("%s: menu %s has no entry %r", self.ai_type, menu_role, label)
            await page.keyboard.press("Escape")
            return False

    async def _select(self, menu_role: str, name: str, entries: List[CatalogEntry]) -> bool:
        label = name
        if entries:
            matched = _match_catalog(name, entries)
            if matched is None:
                LOGGER.debug("%s: %r is not in the configured catalog", self.ai_type, name)
                return False
            label = matched
        return await self._pick_from_menu(menu_role, label)

    async def select_model(self, name: str) -> bool:
        return await self._select("model_menu", name, self._target.models)

    async def select_function(self, name: str) -> bool:
        return await self._select("function_menu", name, self._target.functions)

    async def input_text(self, text: str) -> None:
        box = self._page.locator(self._selector("input_box")).first
        await box.wait_for(state="visible", timeout=self._timeout_ms)
        await box.fill(text, timeout=self._timeout_ms)

    async def click_send(self) -> None:
        button = self._page.locator(self._selector("send_button")).first
        if await button.is_visible():
            await button.click(timeout=self._timeout_ms)
            return
        await self._page.locator(self._selector("input_box")).first.press("Enter")

    async def is_generating(self) -> bool:
        return await self._page.locator(self._selector("stop_button")).first.is_visible()

    async def is_send_available(self) -> bool:
        button = self._page.locator(self._selector("send_button")).first
        return await button.is_visible() and await button.is_enabled()

    async def get_response(self) -> Optional[str]:
        responses = self._page.locator(self._selector("response"))
        if await responses.count() == 0:
            return None
        return await responses.last.inner_text()

    async def current_url(self) -> Optional[str]:
        return self._page.url
