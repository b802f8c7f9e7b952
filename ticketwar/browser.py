"""
Playwright browser lifecycle: session-backed context, popups, artifacts.
"""

import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from playwright.async_api import async_playwright, Browser, BrowserContext, Error as PlaywrightError, Page, Playwright

from ticketwar.events import event_broker, EventType


class BrowserManager:
    """Manages the Playwright browser for a single run."""

    DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
    ARTIFACTS_DIR = DATA_DIR / "artifacts"

    VIEWPORT = {"width": 1366, "height": 768}
    LOCALE = "id-ID"
    TIMEZONE = "Asia/Jakarta"

    def __init__(self):
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._popups: List[Page] = []
        self._pending: Set[asyncio.Task] = set()
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def context(self) -> Optional[BrowserContext]:
        return self._context

    @property
    def page(self) -> Optional[Page]:
        return self._page

    @property
    def popups(self) -> List[Page]:
        """Pages opened by the site after the run page, oldest first."""
        return [p for p in self._popups if not p.is_closed()]

    def latest_popup(self) -> Optional[Page]:
        popups = self.popups
        return popups[-1] if popups else None

    def _on_page(self, page: Page) -> None:
        if page is self._page:
            return
        self._popups.append(page)
        # The event loop holds tasks weakly
        task = asyncio.create_task(event_broker.emit(
            EventType.SUCCESS, "popup_detected", "New popup/window detected!", url=page.url
        ))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def initialize(
        self,
        storage_state: Dict[str, Any],
        headless: bool = False,
        timeout_ms: int = 30000
    ) -> Page:
        """Launch Chromium with the saved session and open the run page."""
        await event_broker.emit(
            EventType.STEP, "browser_init", "Initializing Playwright browser", headless=headless
        )

        self.ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=headless,
            args=[
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
            ],
        )
        self._context = await self._browser.new_context(
            storage_state=storage_state,
            viewport=self.VIEWPORT,
            locale=self.LOCALE,
            timezone_id=self.TIMEZONE,
        )
        self._context.set_default_timeout(timeout_ms)
        self._context.set_default_navigation_timeout(timeout_ms)

        self._page = await self._context.new_page()
        self._context.on("page", self._on_page)

        self._is_running = True

        await event_broker.emit(EventType.STEP, "browser_ready", "Browser initialized successfully")
        return self._page

    async def take_screenshot(self, stage: str, page: Optional[Page] = None) -> str:
        """Take a screenshot and save to artifacts directory."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.ARTIFACTS_DIR / f"{timestamp}_{stage}.png"

        page = page or self.latest_popup() or self._page
        if page and not page.is_closed():
            try:
                await page.screenshot(path=str(filepath), full_page=False)
            except PlaywrightError:
                return ""
            await event_broker.publish(
                event_broker.create_event(
                    EventType.SCREENSHOT,
                    "screenshot_saved",
                    url=page.url,
                    details={"path": str(filepath), "stage": stage}
                )
            )
            return str(filepath)
        return ""

    async def start_tracing(self) -> None:
        """Start tracing for debugging."""
        if self._context:
            await self._context.tracing.start(screenshots=True, snapshots=True, sources=True)

    async def stop_tracing(self, stage: str) -> str:
        """Stop tracing and save it to the artifacts directory."""
        if not self._context:
            return ""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.ARTIFACTS_DIR / f"{timestamp}_{stage}.zip"
        try:
            await self._context.tracing.stop(path=str(filepath))
        except PlaywrightError:
            # Tracing was never started for this context
            return ""
        return str(filepath)

    async def shutdown(self) -> None:
        """Gracefully shutdown browser and Playwright."""
        self._is_running = False

        await event_broker.emit(EventType.STEP, "browser_shutdown", "Shutting down browser")

        # A crashed browser refuses close(); the handles are dropped regardless
        if self._context:
            try:
                await self._context.close()
            except PlaywrightError:
                pass
            self._context = None

        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError:
                pass
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        self._page = None
        self._popups = []


# Global browser manager instance
browser_manager = BrowserManager()
