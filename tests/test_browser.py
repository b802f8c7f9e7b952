"""
Tests for browser lifecycle helpers that do not need a real browser.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from playwright.async_api import Error as PlaywrightError

from ticketwar.browser import BrowserManager
from ticketwar.events import event_broker


def fake_page(url="https://www.loket.com/widget/x", closed=False):
    page = MagicMock()
    page.url = url
    page.is_closed.return_value = closed
    return page


class TestPopups:
    @pytest.mark.asyncio
    async def test_new_pages_are_tracked_as_popups(self):
        manager = BrowserManager()
        first, second = fake_page(), fake_page()

        manager._on_page(first)
        manager._on_page(second)
        await asyncio.sleep(0)

        assert manager.popups == [first, second]
        assert manager.latest_popup() is second

    @pytest.mark.asyncio
    async def test_closed_popups_are_skipped(self):
        manager = BrowserManager()
        live, closed = fake_page(), fake_page(closed=True)

        manager._on_page(live)
        manager._on_page(closed)
        await asyncio.sleep(0)

        assert manager.latest_popup() is live

    @pytest.mark.asyncio
    async def test_popup_event_task_is_held_until_done(self, monkeypatch):
        emitted = []

        async def emit(event_type, step, message, **details):
            emitted.append(step)

        monkeypatch.setattr(event_broker, "emit", emit)
        manager = BrowserManager()

        manager._on_page(fake_page())
        pending = list(manager._pending)

        assert len(pending) == 1
        await asyncio.gather(*pending)
        await asyncio.sleep(0)
        assert manager._pending == set()
        assert emitted == ["popup_detected"]

    def test_no_popups(self):
        assert BrowserManager().latest_popup() is None


class TestArtifacts:
    @pytest.mark.asyncio
    async def test_screenshot_failure_returns_empty_path(self):
        manager = BrowserManager()
        page = fake_page()
        page.screenshot = AsyncMock(side_effect=PlaywrightError("Target closed"))

        assert await manager.take_screenshot("category", page=page) == ""

    @pytest.mark.asyncio
    async def test_screenshot_saved_under_artifacts(self, tmp_path, monkeypatch):
        monkeypatch.setattr(BrowserManager, "ARTIFACTS_DIR", tmp_path)
        manager = BrowserManager()
        page = fake_page()
        page.screenshot = AsyncMock()

        path = await manager.take_screenshot("category", page=page)

        assert path.startswith(str(tmp_path))
        assert path.endswith("_category.png")

    @pytest.mark.asyncio
    async def test_stop_tracing_without_context(self):
        assert await BrowserManager().stop_tracing("x") == ""

    @pytest.mark.asyncio
    async def test_shutdown_tolerates_crashed_browser(self):
        manager = BrowserManager()
        manager._context = MagicMock()
        manager._context.close = AsyncMock(side_effect=PlaywrightError("Browser has been closed"))
        manager._browser = MagicMock()
        manager._browser.close = AsyncMock()

        await manager.shutdown()

        assert manager.context is None
        assert manager.is_running is False
