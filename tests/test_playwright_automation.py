import pytest

from autoai_sheets.browser import PlaywrightWindowFactory
from autoai_sheets.catalog import normalize_catalog
from autoai_sheets.config import AutomationTarget, BrowserConfig
from autoai_sheets.playwright_automation import DEFAULT_SELECTORS, PlaywrightAutomation, _match_catalog
from autoai_sheets.waiting import CancelToken


def test_catalog_match_prefers_exact_name():
    entries = normalize_catalog(["GPT-4o mini", "GPT-4o", "o3"], "model")

    assert _match_catalog("gpt-4o", entries) == "GPT-4o"
    assert _match_catalog("mini", entries) == "GPT-4o mini"
    assert _match_catalog("Opus", entries) is None


@pytest.mark.asyncio
async def test_model_outside_catalog_is_not_clicked(fast_waits):
    target = AutomationTarget(base_url="https://chatgpt.com/", models=["GPT-4o"])
    # No page is needed: the catalog rejects the name before any locator is built.
    automation = PlaywrightAutomation(None, target, "chatgpt", fast_waits, CancelToken())

    assert await automation.select_model("Opus") is False


def test_configured_selectors_override_defaults(fast_waits):
    target = AutomationTarget(base_url="https://claude.ai/new", selectors={"input_box": "div.ProseMirror"})
    automation = PlaywrightAutomation(None, target, "claude", fast_waits, CancelToken())

    assert automation._selector("input_box") == "div.ProseMirror"
    assert automation._selector("send_button") == DEFAULT_SELECTORS["send_button"]


@pytest.mark.asyncio
async def test_window_factory_rejects_unknown_ai_type():
    factory = PlaywrightWindowFactory(BrowserConfig())

    with pytest.raises(ValueError):
        await factory.open("report", 0)
