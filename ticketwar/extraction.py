"""
Payment reference (virtual account number) extraction from rendered text.

Only rendered, visible text is considered. Script and style contents and
hidden elements carry analytics ids that look exactly like account numbers.
"""

import re
from typing import Iterable, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from ticketwar.events import event_broker, EventBroker, EventType
from ticketwar.locator import Candidates, LocatorResolver
from ticketwar.models import is_target_closed, Surface
from ticketwar.targets import SELECTORS


# Tracking ids known to show up in page text (pixel ids, test ids)
DEFAULT_EXCLUDED_IDS = (
    "835386638306873",
    "1234567890123456",
)

# Phone-number shaped prefixes (country code, mobile, Jakarta landline)
EXCLUDED_PREFIXES = ("62", "08", "021")

PAYMENT_KEYWORDS = ("virtual account", "va ", "bca", "pembayaran")

LABELED_NUMBER = re.compile(r"\b(\d{10,16})\b")
CONTAINER_NUMBER = re.compile(r"\b(\d{12,16})\b")
KEYWORD_NUMBER = re.compile(
    r"(?:virtual\s*account|va\s*bca|nomor\s*va|no\.?\s*va|rekening)[:\s]*(\d{10,16})\b",
    re.IGNORECASE
)

# Collects text nodes whose parent is rendered and not script/style
VISIBLE_TEXT_SCRIPT = """
() => {
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
        acceptNode(node) {
            const parent = node.parentElement;
            if (!parent) return NodeFilter.FILTER_REJECT;
            const tag = parent.tagName.toLowerCase();
            if (tag === 'script' || tag === 'style' || tag === 'noscript') {
                return NodeFilter.FILTER_REJECT;
            }
            const style = window.getComputedStyle(parent);
            if (style.display === 'none' || style.visibility === 'hidden') {
                return NodeFilter.FILTER_REJECT;
            }
            return NodeFilter.FILTER_ACCEPT;
        }
    });
    const parts = [];
    let node;
    while ((node = walker.nextNode())) parts.push(node.textContent);
    return parts.join(' ');
}
"""


def is_excluded(number: str, excluded_ids: Iterable[str] = DEFAULT_EXCLUDED_IDS) -> bool:
    """True for known tracking ids and phone-number shaped digit strings."""
    if number in set(excluded_ids):
        return True
    return number.startswith(EXCLUDED_PREFIXES)


def has_payment_context(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in PAYMENT_KEYWORDS)


def first_reference(
    text: str,
    pattern: "re.Pattern" = LABELED_NUMBER,
    excluded_ids: Iterable[str] = DEFAULT_EXCLUDED_IDS
) -> Optional[str]:
    """First digit token matched by `pattern` that is not excluded."""
    excluded_ids = tuple(excluded_ids)
    for number in pattern.findall(text or ""):
        if not is_excluded(number, excluded_ids):
            return number
    return None


def extract_reference(text: str, excluded_ids: Iterable[str] = DEFAULT_EXCLUDED_IDS) -> Optional[str]:
    """Reference number directly following a payment keyword, exclusions applied."""
    return first_reference(text, KEYWORD_NUMBER, excluded_ids)


class ReferenceExtractor:
    """
    Three passes, most specific first:

    1. elements labeled as a payment detail (VA label sibling, copy box)
    2. main content containers that mention a payment keyword
    3. the whole visible text, numbers right after a payment keyword only
    """

    def __init__(
        self,
        resolver: LocatorResolver,
        excluded_ids: Sequence[str] = DEFAULT_EXCLUDED_IDS,
        events: EventBroker = event_broker,
    ):
        self._resolver = resolver
        self._excluded_ids = tuple(excluded_ids)
        self._events = events

    async def _from_labels(self, surface: Surface) -> Optional[str]:
        for selector in SELECTORS["reference_label"]:
            match = await self._resolver.probe(surface, Candidates.of("reference_label", [selector]))
            if not match:
                continue
            try:
                text = await match.locator.inner_text()
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
            number = first_reference(text, LABELED_NUMBER, self._excluded_ids)
            if number:
                await self._events.emit(
                    EventType.INFO, "reference_candidate",
                    f"Found potential VA from label: {number}",
                    selector=selector, source="label"
                )
                return number
        return None

    async def _from_containers(self, surface: Surface) -> Optional[str]:
        for selector in SELECTORS["reference_containers"]:
            try:
                containers = await surface.locator(selector).all()
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
            for container in containers:
                try:
                    text = await container.inner_text()
                except PlaywrightError as e:
                    if is_target_closed(e):
                        raise
                    continue
                if not has_payment_context(text):
                    continue
                number = first_reference(text, CONTAINER_NUMBER, self._excluded_ids)
                if number:
                    await self._events.emit(
                        EventType.INFO, "reference_candidate",
                        f"Found potential VA from container: {number}",
                        selector=selector, source="container"
                    )
                    return number
        return None

    async def _from_visible_text(self, surface: Surface) -> Optional[str]:
        try:
            text = await surface.evaluate(VISIBLE_TEXT_SCRIPT)
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._events.emit(EventType.WARN, "reference_text_error", f"Visible text walk failed: {e}")
            return None
        number = extract_reference(text or "", self._excluded_ids)
        if number:
            await self._events.emit(
                EventType.INFO, "reference_candidate",
                f"Found VA near keyword: {number}",
                source="visible_text"
            )
        return number

    async def extract(self, surface: Surface) -> Optional[str]:
        number = await self._from_labels(surface)
        if not number:
            await self._events.emit(EventType.INFO, "reference_containers", "Looking for VA in visible containers...")
            number = await self._from_containers(surface)
        if not number:
            await self._events.emit(EventType.INFO, "reference_text", "Searching in body text with strict filtering...")
            number = await self._from_visible_text(surface)
        return number
