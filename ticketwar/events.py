"""
Event broker: leveled status events for console output and SSE clients.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum

from ticketwar.models import FlowState


class EventType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARN = "warn"
    ERROR = "error"
    URGENT = "urgent"
    QUEUED = "queued"
    STEP = "step"
    STATE_CHANGE = "state_change"
    SCREENSHOT = "screenshot"
    RESULT = "result"


@dataclass
class Event:
    ts: str
    type: EventType
    step: str
    url: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = asdict(self)
        data["type"] = self.type.value
        return json.dumps(data, default=str)

    def to_log_line(self) -> str:
        return self.to_json()


class EventBroker:
    """Manages SSE subscriptions and event broadcasting."""

    def __init__(self, max_history: int = 100, echo: bool = True):
        self._subscribers: List[asyncio.Queue] = []
        self._history: List[Event] = []
        self._max_history = max_history
        self._echo = echo
        self._lock = asyncio.Lock()

        # Current run tracking
        self._current_state: FlowState = FlowState.IDLE
        self._current_url: str = ""
        self._last_result: Dict[str, Any] = {}
        self._start_time: datetime = datetime.now(timezone.utc)

    @property
    def current_state(self) -> FlowState:
        return self._current_state

    @current_state.setter
    def current_state(self, value: FlowState):
        self._current_state = value

    @property
    def current_url(self) -> str:
        return self._current_url

    @current_url.setter
    def current_url(self, value: str):
        self._current_url = value

    @property
    def last_result(self) -> Dict[str, Any]:
        return self._last_result

    @last_result.setter
    def last_result(self, value: Dict[str, Any]):
        self._last_result = value

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def create_event(
        self,
        event_type: EventType,
        step: str,
        url: str = "",
        details: Dict[str, Any] = None
    ) -> Event:
        return Event(
            ts=datetime.now(timezone.utc).isoformat(),
            type=event_type,
            step=step,
            url=url,
            details=details or {}
        )

    async def emit(
        self,
        event_type: EventType,
        step: str,
        message: str,
        url: Optional[str] = None,
        **details
    ) -> Event:
        """Create and publish an event carrying a human readable message."""
        event = self.create_event(
            event_type,
            step,
            url=self._current_url if url is None else url,
            details={"message": message, **details}
        )
        await self.publish(event)
        return event

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers and log it."""
        # Log to stdout as structured JSON
        if self._echo:
            print(event.to_log_line(), flush=True)

        async with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

            dead_subscribers = []
            for queue in self._subscribers:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    dead_subscribers.append(queue)

            for queue in dead_subscribers:
                self._subscribers.remove(queue)

    async def subscribe(self) -> AsyncGenerator[Event, None]:
        """Subscribe to events. Returns an async generator."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)

        async with self._lock:
            self._subscribers.append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            async with self._lock:
                if queue in self._subscribers:
                    self._subscribers.remove(queue)

    async def get_history(self, limit: int = 50) -> List[Event]:
        """Get recent event history."""
        async with self._lock:
            return self._history[-limit:]

    def get_status(self) -> Dict[str, Any]:
        """Get current status for /status endpoint."""
        return {
            "state": self._current_state.value,
            "current_url": self._current_url,
            "last_result": self._last_result,
            "uptime_seconds": self.uptime_seconds,
            "subscriber_count": len(self._subscribers)
        }


# Global event broker instance
event_broker = EventBroker()
