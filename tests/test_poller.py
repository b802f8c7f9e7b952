"""
Tests for availability polling, including the waiting room scenario.
"""

import asyncio

import pytest
from playwright._impl._errors import TargetClosedError

from conftest import FakeElement, FakePage, find_events
from ticketwar.models import PageHandle
from ticketwar.poller import AvailabilityPoller, PROGRESS_EVERY_TICKS
from ticketwar.queue_gate import QueueGate
from ticketwar.targets import SELECTORS, target


BUY_SELECTOR = SELECTORS["buy_button"][0]


def make_poller(resolver, events, sleep, interval=0.1):
    gate = QueueGate(resolver, events=events, clock=lambda: 0.0, sleep=sleep)
    return AvailabilityPoller(resolver, gate, interval=interval, events=events, sleep=sleep)


class TestAvailabilityPoller:
    @pytest.mark.asyncio
    async def test_returns_immediately_when_available(self, page, resolver, events, sleep):
        page.add(BUY_SELECTOR, FakeElement("Beli Tiket"))
        poller = make_poller(resolver, events, sleep)

        match = await poller.await_availability(PageHandle(page), target("buy_button"))

        assert match.selector == BUY_SELECTOR
        assert poller.ticks == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_detects_within_one_interval(self, page, resolver, events, sleep):
        """Button appearing during sleep k is found on the very next tick."""
        sleep.hooks[7] = lambda: page.add(BUY_SELECTOR, FakeElement("Beli Tiket"))
        poller = make_poller(resolver, events, sleep)

        await poller.await_availability(PageHandle(page), target("buy_button"))

        assert len(sleep.calls) == 7
        assert poller.ticks == 8

    @pytest.mark.asyncio
    async def test_disabled_button_keeps_polling(self, page, resolver, events, sleep):
        button = FakeElement("Beli Tiket", enabled=False)
        page.add(BUY_SELECTOR, button)
        sleep.hooks[2] = lambda: setattr(button, "enabled", True)
        poller = make_poller(resolver, events, sleep)

        await poller.await_availability(PageHandle(page), target("buy_button"))

        assert poller.ticks == 3

    @pytest.mark.asyncio
    async def test_waiting_room_is_never_reloaded(self, resolver, events, sleep):
        """Three gated ticks, no navigation, buy control first probed on tick 4."""
        page = FakePage("https://www.loket.com/waiting-room/konser")
        page.add(BUY_SELECTOR, FakeElement("Beli Tiket"))
        probed_before_sleep = []

        def on_each(count):
            probed_before_sleep.append(page.queries.count(BUY_SELECTOR))
            if count == 3:
                page.url = "https://www.loket.com/event/konser"

        sleep.on_each = on_each
        poller = make_poller(resolver, events, sleep)

        match = await poller.await_availability(PageHandle(page), target("buy_button"))

        assert match is not None
        assert poller.ticks == 4
        assert probed_before_sleep == [0, 0, 0]
        assert page.navigations == []
        assert len(await find_events(events, "queue_waiting")) >= 1

    @pytest.mark.asyncio
    async def test_progress_reported_at_low_frequency(self, page, resolver, events, sleep):
        sleep.hooks[PROGRESS_EVERY_TICKS * 2 + 5] = lambda: page.add(BUY_SELECTOR, FakeElement("Beli Tiket"))
        poller = make_poller(resolver, events, sleep)

        await poller.await_availability(PageHandle(page), target("buy_button"))

        assert len(await find_events(events, "still_scanning")) == 2

    @pytest.mark.asyncio
    async def test_cancellation_stops_polling(self, page, resolver, events, sleep):
        poller = make_poller(resolver, events, sleep)
        task = asyncio.create_task(poller.await_availability(PageHandle(page), target("buy_button")))

        for _ in range(10):
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_closed_page_ends_polling(self, page, resolver, events, sleep):
        sleep.hooks[3] = page.crash
        poller = make_poller(resolver, events, sleep)

        with pytest.raises(TargetClosedError):
            await poller.await_availability(PageHandle(page), target("buy_button"))

        assert poller.ticks == 4
        assert len(sleep.calls) == 3

    @pytest.mark.asyncio
    async def test_closed_page_in_waiting_room_ends_polling(self, resolver, events, sleep):
        page = FakePage("https://www.loket.com/waiting-room/konser")
        sleep.hooks[2] = page.crash
        poller = make_poller(resolver, events, sleep)

        with pytest.raises(TargetClosedError):
            await poller.await_availability(PageHandle(page), target("buy_button"))

        assert poller.ticks == 3
        assert page.navigations == []
