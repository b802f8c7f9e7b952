"""
High-frequency availability polling for the primary buy control.
"""

import asyncio
from typing import Awaitable, Callable

from ticketwar.events import event_broker, EventBroker, EventType
from ticketwar.locator import Candidates, LocatorResolver, Match
from ticketwar.models import PageHandle
from ticketwar.queue_gate import QueueGate


# Progress event every N ticks (about 10s at the default 100ms interval)
PROGRESS_EVERY_TICKS = 100


class AvailabilityPoller:
    """
    Blocks until the target control is interactable and the page is not gated.

    Each tick does exactly one gate check and, when not gated, one probe.
    There is no timeout: polling ends on a match, when the task is cancelled,
    or with TargetClosedError once the page is gone.
    """

    def __init__(
        self,
        resolver: LocatorResolver,
        gate: QueueGate,
        interval: float,
        events: EventBroker = event_broker,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._resolver = resolver
        self._gate = gate
        self._interval = interval
        self._events = events
        self._sleep = sleep
        self.ticks = 0

    async def await_availability(self, handle: PageHandle, candidates: Candidates) -> Match:
        await self._events.emit(
            EventType.URGENT,
            "war_mode",
            "WAR MODE ACTIVATED - Scanning for ticket button...",
            url=handle.url,
            interval_ms=int(self._interval * 1000)
        )

        while True:
            self.ticks += 1
            handle.ensure_open()

            if self._gate.is_gated(handle.url):
                await self._gate.report(handle)
                await self._sleep(self._interval)
                continue

            match = await self._resolver.probe(handle.surface, candidates)
            if match:
                await self._events.emit(
                    EventType.SUCCESS,
                    "buy_button_found",
                    f"Buy button found after {self.ticks} iterations!",
                    url=handle.url,
                    selector=match.selector,
                    ticks=self.ticks
                )
                return match

            if self.ticks % PROGRESS_EVERY_TICKS == 0:
                await self._events.emit(
                    EventType.INFO,
                    "still_scanning",
                    f"Still scanning... ({self.ticks * self._interval:.1f}s elapsed)",
                    url=handle.url,
                    ticks=self.ticks
                )

            await self._sleep(self._interval)
