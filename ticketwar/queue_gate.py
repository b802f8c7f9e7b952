"""
Waiting room / queue detection.

The site parks buyers in a waiting room under a distinct URL. While parked,
reloading or navigating forfeits the queue position, so the gate only ever
reads the current location and sleeps.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from ticketwar.events import event_broker, EventBroker, EventType
from ticketwar.locator import LocatorResolver
from ticketwar.models import is_target_closed, PageHandle, Surface
from ticketwar.targets import target


DEFAULT_QUEUE_MARKERS = ("waiting-room", "queue", "antrean", "antrian")

# Indicators shown in status events while queued
QUEUE_INDICATORS = ("queue_position", "queue_eta", "queue_progress")


def is_gated(location: str, markers: Sequence[str] = DEFAULT_QUEUE_MARKERS) -> bool:
    """True if the location contains any queue marker (case-insensitive)."""
    location = (location or "").lower()
    return any(marker.lower() in location for marker in markers)


class QueueGate:
    """Queue classification plus throttled status reporting."""

    def __init__(
        self,
        resolver: LocatorResolver,
        markers: Sequence[str] = DEFAULT_QUEUE_MARKERS,
        status_interval: float = 5.0,
        events: EventBroker = event_broker,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._resolver = resolver
        self._markers = tuple(markers)
        self._status_interval = status_interval
        self._events = events
        self._clock = clock
        self._sleep = sleep
        self._last_report: Optional[float] = None

    @property
    def markers(self) -> tuple:
        return self._markers

    def is_gated(self, location: str) -> bool:
        return is_gated(location, self._markers)

    async def _read_indicators(self, surface: Surface) -> Dict[str, str]:
        indicators = {}
        for key in QUEUE_INDICATORS:
            match = await self._resolver.probe(surface, target(key))
            if not match:
                continue
            try:
                indicators[key] = (await match.locator.inner_text()).strip()
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
        return indicators

    async def report(self, handle: PageHandle) -> bool:
        """Emit a queue status event at most once per status interval."""
        now = self._clock()
        if self._last_report is not None and now - self._last_report < self._status_interval:
            return False
        self._last_report = now

        indicators = await self._read_indicators(handle.surface)
        await self._events.emit(
            EventType.QUEUED,
            "queue_waiting",
            "In waiting room - staying patient, NOT refreshing...",
            url=handle.url,
            **indicators
        )
        return True

    async def wait_until_clear(self, handle: PageHandle, interval: float) -> int:
        """
        Block while the handle's location is gated. Returns the number of
        ticks spent waiting (0 if the gate was already clear).
        """
        ticks = 0
        while self.is_gated(handle.url):
            handle.ensure_open()
            ticks += 1
            await self.report(handle)
            await self._sleep(interval)

        if ticks:
            await self._events.emit(
                EventType.SUCCESS,
                "queue_cleared",
                f"Left the waiting room after {ticks} checks",
                url=handle.url,
                ticks=ticks
            )
        return ticks
