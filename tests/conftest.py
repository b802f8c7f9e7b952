"""
Shared fixtures: an in-memory stand-in for the Playwright page surface.

Elements are registered per selector string. A locator built from a
selector resolves to exactly the elements registered under that string,
so tests script which candidate of an ordered list is present.
"""

import asyncio
import re
from typing import Any, Callable, Dict, List, Optional

import pytest
from playwright._impl._errors import TargetClosedError
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from ticketwar.config import AcquisitionConfig
from ticketwar.events import EventBroker
from ticketwar.locator import LocatorResolver


class FakeElement:
    """A scripted DOM element."""

    def __init__(
        self,
        text: str = "",
        visible: bool = True,
        enabled: bool = True,
        value: str = "",
        checked: bool = False,
        attrs: Optional[Dict[str, str]] = None,
        on_click: Optional[Callable[[], None]] = None,
        input_filter: Optional[Callable[[str], str]] = None,
    ):
        self.text = text
        self.visible = visible
        self.enabled = enabled
        self.value = value
        self.checked = checked
        self.attrs = attrs or {}
        self.on_click = on_click
        self.input_filter = input_filter
        self.children: Dict[str, List["FakeElement"]] = {}
        self.broken: set = set()
        self.clicks = 0
        self.typed: List[str] = []

    def add(self, selector: str, *elements: "FakeElement") -> "FakeElement":
        self.children.setdefault(selector, []).extend(elements)
        return self

    def click(self) -> None:
        self.clicks += 1
        if self.on_click:
            self.on_click()


class FakeLocator:
    """Subset of playwright Locator used by the engine."""

    def __init__(self, owner, selector: str, index: Optional[int] = None, elements=None):
        self._owner = owner
        self._selector = selector
        self._index = index
        self._fixed = elements

    def _all(self) -> List[FakeElement]:
        if self._fixed is not None:
            return self._fixed
        root = self._owner.root()
        if root is None:
            return []
        if self._selector in root.broken:
            raise PlaywrightError(f"Unexpected token in selector {self._selector!r}")
        return list(root.children.get(self._selector, []))

    def root(self) -> Optional[FakeElement]:
        return self._target()

    def _target(self) -> Optional[FakeElement]:
        elements = self._all()
        index = self._index if self._index is not None else 0
        return elements[index] if index < len(elements) else None

    def _require(self) -> FakeElement:
        element = self._target()
        if element is None or not element.visible:
            raise PlaywrightTimeout(f"Timeout waiting for {self._selector!r}")
        return element

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self._owner, self._selector, 0, self._fixed)

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self._owner, self._selector, index, self._fixed)

    def locator(self, selector: str) -> "FakeLocator":
        return FakeLocator(self, selector)

    def filter(self, has_text=None) -> "FakeLocator":
        def matches(element):
            if isinstance(has_text, re.Pattern):
                return bool(has_text.search(element.text))
            return has_text in element.text
        return FakeLocator(self._owner, self._selector, None, [e for e in self._all() if matches(e)])

    async def count(self) -> int:
        if self._index is not None:
            return 1 if self._target() else 0
        return len(self._all())

    async def all(self) -> List["FakeLocator"]:
        return [self.nth(i) for i in range(len(self._all()))]

    async def is_visible(self) -> bool:
        element = self._target()
        return bool(element and element.visible)

    async def is_enabled(self, timeout: Optional[float] = None) -> bool:
        element = self._target()
        if element is None:
            raise PlaywrightTimeout(f"Timeout waiting for {self._selector!r}")
        return element.enabled

    async def wait_for(self, state: str = "visible", timeout: Optional[float] = None) -> None:
        self._require()

    async def click(self, timeout: Optional[float] = None) -> None:
        element = self._require()
        if not element.enabled:
            raise PlaywrightTimeout(f"Element {self._selector!r} is not enabled")
        element.click()

    async def fill(self, value: str) -> None:
        element = self._require()
        element.value = element.input_filter(value) if element.input_filter else value

    async def press_sequentially(self, text: str, delay: Optional[float] = None) -> None:
        element = self._require()
        element.typed.append(text)
        typed = element.value + text
        element.value = element.input_filter(typed) if element.input_filter else typed

    async def input_value(self) -> str:
        return self._require().value

    async def is_checked(self) -> bool:
        return self._require().checked

    async def check(self, timeout: Optional[float] = None) -> None:
        self._require().checked = True

    async def inner_text(self) -> str:
        return self._require().text

    async def get_attribute(self, name: str) -> Optional[str]:
        return self._require().attrs.get(name)

    async def scroll_into_view_if_needed(self, timeout: Optional[float] = None) -> None:
        self._require()

    async def select_option(self, value: Any = None) -> List[str]:
        element = self._require()
        element.value = str(value)
        return [element.value]


class _Surface:
    """Shared by FakePage and FakeFrame: a root element plus a URL."""

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.dom = FakeElement()
        self.queries: List[str] = []
        self.visible_text = ""

    def gone(self) -> bool:
        return False

    def root(self) -> FakeElement:
        if self.gone():
            raise TargetClosedError()
        return self.dom

    def add(self, selector: str, *elements: FakeElement) -> "_Surface":
        self.dom.add(selector, *elements)
        return self

    def remove(self, selector: str) -> None:
        self.dom.children.pop(selector, None)

    def break_selector(self, selector: str) -> None:
        self.dom.broken.add(selector)

    def locator(self, selector: str) -> FakeLocator:
        if self.gone():
            raise TargetClosedError()
        self.queries.append(selector)
        return FakeLocator(self, selector)

    async def evaluate(self, script: str) -> str:
        if self.gone():
            raise TargetClosedError()
        return self.visible_text


class FakeFrame(_Surface):
    def __init__(self, page: "FakePage", url: str):
        super().__init__(url)
        self.page = page

    def gone(self) -> bool:
        return self.page.closed


class FakePage(_Surface):
    """Records every navigation so tests can assert none happened."""

    def __init__(self, url: str = "about:blank"):
        super().__init__(url)
        self.navigations: List[str] = []
        self.landing_url: Optional[str] = None
        self.main_frame = object()
        self.child_frames: List[FakeFrame] = []
        self.closed = False

    @property
    def frames(self) -> list:
        return [self.main_frame] + self.child_frames

    def add_frame(self, url: str) -> FakeFrame:
        frame = FakeFrame(self, url)
        self.child_frames.append(frame)
        return frame

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[float] = None) -> None:
        self.navigations.append(url)
        self.url = self.landing_url or url

    async def reload(self, **kwargs) -> None:
        self.navigations.append(self.url)

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        return None

    def is_closed(self) -> bool:
        return self.closed

    def gone(self) -> bool:
        return self.closed

    def crash(self) -> None:
        """Every later query raises, as on a crashed or closed page."""
        self.closed = True


class SleepRecorder:
    """Injected sleep: records durations and runs per-call hooks."""

    def __init__(self):
        self.calls: List[float] = []
        self.hooks: Dict[int, Callable[[], None]] = {}
        self.on_each: Optional[Callable[[int], None]] = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        count = len(self.calls)
        if self.on_each:
            self.on_each(count)
        hook = self.hooks.get(count)
        if hook:
            hook()
        await asyncio.sleep(0)


EVENT_URL = "https://www.loket.com/event/konser-akbar-2026"


@pytest.fixture
def events():
    return EventBroker(max_history=1000, echo=False)


@pytest.fixture
def resolver():
    return LocatorResolver(probe_timeout_ms=10)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def page():
    return FakePage(EVENT_URL)


@pytest.fixture
def config_data():
    return {
        "targetUrl": EVENT_URL,
        "categoryKeywords": ["VIP", "GOLD"],
        "ticketAmount": 2,
        "personalData": {
            "name": "Budi Santoso",
            "nik": "3174012345678901",
            "email": "budi@example.com",
            "phone": "081234567890",
        },
    }


@pytest.fixture
def config(config_data):
    return AcquisitionConfig.model_validate(config_data)


async def steps(broker: EventBroker) -> List[str]:
    return [e.step for e in await broker.get_history(1000)]


async def find_events(broker: EventBroker, step: str) -> list:
    return [e for e in await broker.get_history(1000) if e.step == step]
