"""
Tests for the event broker.
"""

import asyncio
import json

import pytest

from ticketwar.events import EventBroker, EventType
from ticketwar.models import FlowState


class TestEventBroker:
    @pytest.mark.asyncio
    async def test_emit_carries_message_and_details(self, events):
        event = await events.emit(EventType.WARN, "field_missing", "Could not find field", field="NIK", url="https://x")

        assert event.type == EventType.WARN
        assert event.url == "https://x"
        assert event.details == {"message": "Could not find field", "field": "NIK"}

    @pytest.mark.asyncio
    async def test_emit_defaults_to_current_url(self, events):
        events.current_url = "https://www.loket.com/event/x"

        event = await events.emit(EventType.INFO, "tick", "tick")

        assert event.url == "https://www.loket.com/event/x"

    @pytest.mark.asyncio
    async def test_echo_prints_json_line(self, capsys):
        broker = EventBroker(echo=True)

        await broker.emit(EventType.URGENT, "war_mode", "WAR MODE")

        line = json.loads(capsys.readouterr().out.strip())
        assert line["type"] == "urgent"
        assert line["step"] == "war_mode"
        assert line["details"]["message"] == "WAR MODE"

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        broker = EventBroker(max_history=3, echo=False)
        for i in range(5):
            await broker.emit(EventType.INFO, f"s{i}", "x")

        assert [e.step for e in await broker.get_history()] == ["s2", "s3", "s4"]
        assert [e.step for e in await broker.get_history(limit=1)] == ["s4"]

    @pytest.mark.asyncio
    async def test_subscribers_receive_events(self, events):
        received = []

        async def listen():
            async for event in events.subscribe():
                received.append(event.step)
                if len(received) == 2:
                    break

        task = asyncio.create_task(listen())
        await asyncio.sleep(0)
        await events.emit(EventType.QUEUED, "queue_waiting", "waiting")
        await events.emit(EventType.SUCCESS, "queue_cleared", "cleared")
        await asyncio.wait_for(task, timeout=1)

        assert received == ["queue_waiting", "queue_cleared"]

    def test_status(self, events):
        events.current_state = FlowState.FORM_FILLING
        events.last_result = {"state": "completed"}

        status = events.get_status()

        assert status["state"] == "form_filling"
        assert status["last_result"] == {"state": "completed"}
        assert status["uptime_seconds"] >= 0
