"""
Ticket acquisition flow state machine.
Handles: Wait for sale → Buy → Category → Quantity → Form → Checkout → Payment → Reference
"""

import asyncio
import os
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError, Locator, Page, TimeoutError as PlaywrightTimeout

from ticketwar.config import AcquisitionConfig, PaymentPreference
from ticketwar.events import event_broker, EventBroker, EventType
from ticketwar.extraction import ReferenceExtractor
from ticketwar.locator import Candidates, LocatorResolver, Match
from ticketwar.models import FlowResult, FlowState, is_target_closed, PageHandle, Surface
from ticketwar.poller import AvailabilityPoller
from ticketwar.queue_gate import QueueGate
from ticketwar.targets import target

# =============================================================================
# CONFIGURABLE TIMING PARAMETERS (via environment variables)
# =============================================================================

# TIMEOUT_* = max wait, proceeds immediately when ready
# WAIT_* = fixed sleep, always waits the full duration

TIMEOUT_MS_ELEMENT_VISIBLE = int(os.getenv("TIMEOUT_MS_ELEMENT_VISIBLE", "10000"))
TIMEOUT_MS_POPOVER = int(os.getenv("TIMEOUT_MS_POPOVER", "3000"))

WAIT_SECONDS_AFTER_TRIGGER = float(os.getenv("WAIT_SECONDS_AFTER_TRIGGER", "3.0"))
WAIT_SECONDS_POPUP_SETTLE = float(os.getenv("WAIT_SECONDS_POPUP_SETTLE", "2.0"))
WAIT_SECONDS_SELECTION = float(os.getenv("WAIT_SECONDS_SELECTION", "1.0"))
WAIT_SECONDS_QUANTITY_STEP = float(os.getenv("WAIT_SECONDS_QUANTITY_STEP", "0.1"))
WAIT_SECONDS_FORM_LOAD = float(os.getenv("WAIT_SECONDS_FORM_LOAD", "2.0"))
WAIT_SECONDS_UI_SETTLE = float(os.getenv("WAIT_SECONDS_UI_SETTLE", "0.3"))
WAIT_SECONDS_CHECKOUT_STEP = float(os.getenv("WAIT_SECONDS_CHECKOUT_STEP", "1.0"))
WAIT_SECONDS_PAYMENT_LOAD = float(os.getenv("WAIT_SECONDS_PAYMENT_LOAD", "3.0"))
WAIT_SECONDS_ACCORDION = float(os.getenv("WAIT_SECONDS_ACCORDION", "1.5"))
WAIT_SECONDS_REFERENCE = float(os.getenv("WAIT_SECONDS_REFERENCE", "3.0"))

# Continue/next clicks before giving the payment step control
MAX_CONTINUE_CLICKS = int(os.getenv("MAX_CONTINUE_CLICKS", "5"))

# Per-key delay when typing the phone number
PHONE_TYPE_DELAY_MS = 30


SOLD_OUT_TEXT = ("sold out", "habis", "tidak tersedia")

GENDER_VALUES = {
    "male": ("male", "L", "M", "laki-laki", "pria"),
    "female": ("female", "P", "F", "perempuan", "wanita"),
}
GENDER_LABELS = {
    "male": ("Laki", "Male", "Pria"),
    "female": ("Perempuan", "Female", "Wanita"),
}
# Radio order on the form: male first
GENDER_POSITIONS = {"male": 0, "female": 1}

MONTH_NAMES = {
    "id": ("Januari", "Februari", "Maret", "April", "Mei", "Juni",
           "Juli", "Agustus", "September", "Oktober", "November", "Desember"),
    "en": ("January", "February", "March", "April", "May", "June",
           "July", "August", "September", "October", "November", "December"),
}
MONTH_HEADER = re.compile("|".join(MONTH_NAMES["id"] + MONTH_NAMES["en"]))
YEAR_HEADER = re.compile(r"^\s*(19|20)\d{2}\s*$")


class PhoneCheck(str, Enum):
    EXACT = "exact"
    LEADING_ZERO_STRIPPED = "leading_zero_stripped"
    MISMATCH = "mismatch"


def check_phone_value(expected: str, actual: str) -> PhoneCheck:
    """Compare what the phone input holds against what was typed."""
    if actual == expected:
        return PhoneCheck.EXACT
    if expected.startswith("0") and actual == expected[1:]:
        return PhoneCheck.LEADING_ZERO_STRIPPED
    return PhoneCheck.MISMATCH


def is_sold_out_text(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in SOLD_OUT_TEXT)


def gender_candidates(gender: str) -> Candidates:
    """Localized radio values first, then visible labels."""
    selectors = [f'input[type="radio"][value="{value}"]' for value in GENDER_VALUES[gender]]
    selectors += [f'label:has-text("{label}")' for label in GENDER_LABELS[gender]]
    selectors.append(f'div:has-text("{GENDER_LABELS[gender][0]}") input[type="radio"]')
    return Candidates.of("gender", selectors)


def year_offset(first: str, second: str, year: int) -> Optional[int]:
    """
    Index of `year` in a year list whose first two entries are given.

    Works for ascending and descending lists; None if the entries are not
    consecutive years.
    """
    try:
        first_year, second_year = int(first.strip()), int(second.strip())
    except ValueError:
        return None
    step = second_year - first_year
    if step not in (1, -1):
        return None
    offset = (year - first_year) * step
    return offset if offset >= 0 else None


def _preview(value: str, size: int = 10) -> str:
    return value if len(value) <= size else f"{value[:size]}..."


@dataclass
class CategoryRow:
    """One ticket category as rendered on the selection page."""
    index: int
    text: str
    locator: Locator

    @property
    def name(self) -> str:
        lines = [line.strip() for line in self.text.splitlines() if line.strip()]
        return lines[0] if lines else f"row {self.index + 1}"


class AcquisitionFlow:
    """
    State machine for the ticket acquisition flow.

    Flow:
    1. Open the event page (once; the waiting room must never be reloaded)
    2. Poll for the buy button, sitting out any waiting room
    3. Click it and follow the ticket widget into a popup or frame
    4. Select a category (preferred keywords, then anything available)
    5. Set quantity
    6. Fill the identity form
    7. Click through checkout until payment methods show
    8. Select the payment method and confirm
    9. Read the payment reference; paying is left to the operator

    Only steps 3 and 4 can end the run early. Every other miss is a warning.
    """

    def __init__(
        self,
        config: AcquisitionConfig,
        resolver: Optional[LocatorResolver] = None,
        events: EventBroker = event_broker,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        popup_source: Optional[Callable[[], Optional[Page]]] = None,
        browser=None,
    ):
        self.config = config
        self._resolver = resolver or LocatorResolver()
        self._events = events
        self._sleep = sleep
        self._popup_source = popup_source or (lambda: None)
        self._browser = browser
        self._timeout_ms = config.settings.timeout

        self._gate = QueueGate(
            self._resolver,
            markers=config.settings.queue_markers,
            events=events,
            sleep=sleep,
        )
        self._poller = AvailabilityPoller(
            self._resolver,
            self._gate,
            interval=config.settings.poll_interval,
            events=events,
            sleep=sleep,
        )
        self._extractor = ReferenceExtractor(
            self._resolver,
            excluded_ids=config.settings.excluded_ids,
            events=events,
        )

        host = (urlparse(config.target_url).hostname or "").lower()
        self._frame_markers = tuple(m for m in ("widget", host.replace("www.", "")) if m)

        self._current_state = FlowState.IDLE
        self._handle: Optional[PageHandle] = None
        self.visited: List[FlowState] = []
        self.category_attempts = 0
        self.selected_category: Optional[str] = None

    @property
    def current_state(self) -> FlowState:
        return self._current_state

    @property
    def handle(self) -> Optional[PageHandle]:
        return self._handle

    @property
    def poller(self) -> AvailabilityPoller:
        return self._poller

    def _update_state(self, state: FlowState) -> None:
        """Update flow state and sync with event broker."""
        self._current_state = state
        self.visited.append(state)
        self._events.current_state = state

    async def _log(self, event_type: EventType, step: str, message: str, **details) -> None:
        url = self._handle.url if self._handle else ""
        self._events.current_url = url
        await self._events.emit(event_type, step, message, url=url, **details)

    async def _click(self, match: Match, step: str, message: str, **details) -> bool:
        """Click a resolved element. A Playwright failure is logged, not raised."""
        try:
            await match.locator.click(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._log(
                EventType.WARN, f"{step}_click_failed", f"Click failed: {e}",
                selector=match.selector, **details
            )
            return False
        await self._log(EventType.SUCCESS, step, message, selector=match.selector, **details)
        return True

    async def _handle_error(self, stage: str, error: str) -> None:
        """Capture screenshot and trace, then publish the error."""
        screenshot_path = ""
        trace_path = ""
        if self._browser:
            page = self._handle.page if self._handle else None
            screenshot_path = await self._browser.take_screenshot(stage, page=page)
            trace_path = await self._browser.stop_tracing(stage)

        await self._log(
            EventType.ERROR, f"{stage}_error", error,
            screenshot=screenshot_path, trace=trace_path
        )

    async def execute(self, page: Page) -> FlowResult:
        """
        Run the whole flow on `page`. Always returns exactly one FlowResult.

        Cancelling the task running this coroutine ends the run as ABORTED.
        """
        self._handle = PageHandle(page)
        await self._log(
            EventType.INFO, "flow_started", "Starting ticket acquisition flow",
            target_url=self.config.target_url,
            categories=self.config.category_keywords,
            quantity=self.config.ticket_amount
        )

        try:
            result = await self._run(self._handle)
        except asyncio.CancelledError:
            result = FlowResult.aborted(
                "Interrupted by operator",
                interrupted_in=self._current_state.value
            )
        except Exception as e:
            await self._handle_error("flow_exception", f"Flow exception: {e}")
            result = FlowResult.aborted(
                f"Flow exception: {e}",
                error=str(e),
                failed_in=self._current_state.value
            )

        self._update_state(result.state)
        self._events.last_result = result.to_dict()
        await self._log(
            EventType.RESULT, "flow_complete", result.message,
            state=result.state.value, reference=result.reference
        )
        return result

    async def _run(self, handle: PageHandle) -> FlowResult:
        self._update_state(FlowState.IDLE)
        await self._step_open_event(handle)

        self._update_state(FlowState.AWAITING_AVAILABILITY)
        buy_button = await self._poller.await_availability(handle, target("buy_button"))

        result = await self._step_trigger(handle, buy_button)
        if result:
            return result

        handle.ensure_open()
        result = await self._step_select_category(handle)
        if result:
            return result

        # Later steps only warn on misses, so a closed page must stop them here
        handle.ensure_open()
        await self._step_set_quantity(handle)
        handle.ensure_open()
        await self._step_fill_form(handle)
        handle.ensure_open()
        await self._step_advance_checkout(handle)
        handle.ensure_open()
        payment = await self._step_select_payment(handle)
        handle.ensure_open()
        reference = await self._step_extract_reference(handle, payment)

        if reference:
            return FlowResult.completed(
                reference, f"Payment ready, VA number {reference}",
                category=self.selected_category, payment=payment
            )
        return FlowResult.completed(
            None, "Payment surface reached, reference not confirmed",
            category=self.selected_category, payment=payment
        )

    # ------------------------------------------------------------------
    # Step 1-2: open and wait
    # ------------------------------------------------------------------

    async def _step_open_event(self, handle: PageHandle) -> None:
        """The only navigation before the sale opens."""
        await self._log(EventType.INFO, "open_event", "Navigating to target event...")
        try:
            await handle.page.goto(
                self.config.target_url,
                wait_until="domcontentloaded",
                timeout=self._timeout_ms
            )
        except PlaywrightTimeout:
            # Overloaded servers often finish rendering after the timeout
            await self._log(
                EventType.WARN, "open_event_slow",
                "Event page still loading, polling anyway", timeout_ms=self._timeout_ms
            )

        if self._gate.is_gated(handle.url):
            await self._log(
                EventType.QUEUED, "waiting_room_entered",
                "Entered waiting room immediately - waiting patiently..."
            )

    # ------------------------------------------------------------------
    # Step 3: trigger and surface switch
    # ------------------------------------------------------------------

    async def _step_trigger(self, handle: PageHandle, buy_button: Match) -> Optional[FlowResult]:
        self._update_state(FlowState.ACTION_TRIGGERED)
        await self._log(EventType.URGENT, "buy_click", "CLICKING BUY BUTTON!", selector=buy_button.selector)

        popup_before = self._popup_source()
        clicked = await self._click(buy_button, "buy_clicked", "Buy button clicked")
        if not clicked:
            # The button can re-render between probe and click
            rematch = await self._resolver.resolve(handle.surface, target("buy_button"), TIMEOUT_MS_ELEMENT_VISIBLE)
            if rematch:
                clicked = await self._click(rematch, "buy_clicked", "Buy button clicked on second resolve")
        if not clicked:
            await self._handle_error("buy_click", "Could not activate the buy button")
            return FlowResult.aborted("Could not activate the buy button")

        await self._log(EventType.INFO, "ticket_page_wait", "Waiting for ticket selection page to load...")
        await self._sleep(WAIT_SECONDS_AFTER_TRIGGER)

        # Some sales queue buyers only after the buy click
        await self._gate.wait_until_clear(handle, self.config.settings.poll_interval)

        await self._switch_surface(handle, popup_before)
        return None

    async def _find_widget_frame(self, handle: PageHandle) -> Optional[Surface]:
        page = handle.page
        main_frame = page.main_frame
        frames = page.frames
        await self._log(EventType.INFO, "frames_scan", f"Found {len(frames)} frames on page")

        for frame in frames:
            if frame is main_frame:
                continue
            frame_url = (frame.url or "").lower()
            if not any(marker in frame_url for marker in self._frame_markers):
                continue
            if await self._resolver.exists(frame, target("category_ready")):
                return frame
        return None

    async def _try_widget_urls(self, handle: PageHandle) -> None:
        """Navigate to configured widget URLs until one shows category controls."""
        for widget_url in self.config.widget_urls():
            await self._log(EventType.INFO, "widget_url_try", f"Trying: {widget_url}")
            try:
                await handle.page.goto(widget_url, wait_until="domcontentloaded", timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                await self._log(EventType.WARN, "widget_url_failed", f"Widget URL failed: {e}", widget_url=widget_url)
                continue
            await self._sleep(WAIT_SECONDS_POPUP_SETTLE)
            if await self._resolver.exists(handle.surface, target("category_ready")):
                await self._log(EventType.SUCCESS, "widget_url_found", f"Found ticket page at: {widget_url}")
                return

    async def _switch_surface(self, handle: PageHandle, popup_before: Optional[Page]) -> None:
        """
        Pick the surface that hosts the ticket widget: a new popup, else an
        embedded widget frame, else the original page.
        """
        popup = self._popup_source()
        if popup is not None and popup is not popup_before:
            handle.transfer(popup, "popup")
            await self._log(EventType.SUCCESS, "surface_popup", "Switching to popup window...")
            try:
                await popup.wait_for_load_state("domcontentloaded", timeout=self._timeout_ms)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                await self._log(EventType.WARN, "popup_load_slow", f"Popup still loading: {e}")
            await self._sleep(WAIT_SECONDS_POPUP_SETTLE)
            await self._log(EventType.INFO, "popup_url", f"Popup URL: {handle.url}")
        else:
            frame = await self._find_widget_frame(handle)
            if frame is not None:
                handle.transfer(frame, "widget_frame")
                await self._log(EventType.SUCCESS, "surface_frame", "Found ticket widget in iframe!")
            else:
                await self._log(EventType.INFO, "surface_original", f"URL after click: {handle.url}")
                if not await self._resolver.exists(handle.surface, target("category_ready")):
                    await self._try_widget_urls(handle)

        ready = await self._resolver.resolve(handle.surface, target("category_ready"), TIMEOUT_MS_ELEMENT_VISIBLE)
        if ready:
            try:
                await ready.locator.scroll_into_view_if_needed(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                pass
            await self._log(EventType.SUCCESS, "ticket_page_ready", "Ticket selection page/modal loaded!", selector=ready.selector)
        else:
            await self._log(EventType.INFO, "ticket_page_unconfirmed", "Continuing to search for categories...")

    # ------------------------------------------------------------------
    # Step 4: category
    # ------------------------------------------------------------------

    async def _read_rows(self, rows: Locator) -> List[CategoryRow]:
        result = []
        for index in range(await rows.count()):
            row = rows.nth(index)
            try:
                text = await row.inner_text()
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
            result.append(CategoryRow(index, text, row))
        return result

    async def _is_sold_out(self, row: CategoryRow) -> bool:
        if is_sold_out_text(row.text):
            return True
        return await self._resolver.exists(row.locator, target("sold_out_marker"))

    async def _select_row(self, row: CategoryRow, reason: str) -> bool:
        select = await self._resolver.probe(row.locator, target("category_select"))
        if not select:
            await self._log(
                EventType.WARN, "category_no_select",
                f"No select control in category \"{row.name}\"", reason=reason
            )
            return False

        self.category_attempts += 1
        if not await self._click(select, "category_selected", f"Selected category: \"{row.name}\"", reason=reason):
            return False
        self.selected_category = row.name
        await self._sleep(WAIT_SECONDS_SELECTION)
        return True

    async def _step_select_category(self, handle: PageHandle) -> Optional[FlowResult]:
        """Preferred keywords in order, then any available category."""
        self._update_state(FlowState.CATEGORY_SELECTING)
        await self._log(EventType.INFO, "category_search", "Looking for ticket categories...")
        await self._sleep(WAIT_SECONDS_UI_SETTLE)

        keywords = self.config.category_keywords
        rows_match = await self._resolver.collect(handle.surface, target("category_row"))

        if rows_match:
            rows = await self._read_rows(rows_match.locator)
            await self._log(
                EventType.INFO, "category_rows",
                f"Found {len(rows)} category rows", selector=rows_match.selector
            )

            for keyword in keywords:
                await self._log(EventType.INFO, "category_keyword", f"Searching for category: \"{keyword}\"")
                for row in rows:
                    if keyword.lower() not in row.text.lower():
                        continue
                    if await self._is_sold_out(row):
                        await self._log(EventType.WARN, "category_sold_out", f"Category \"{keyword}\" is SOLD OUT, trying next...")
                        continue
                    if await self._select_row(row, reason=f"keyword:{keyword}"):
                        return None

            if keywords:
                await self._log(EventType.WARN, "category_fallback", "Keyword not matched, selecting first available category...")
            for row in rows:
                if await self._is_sold_out(row):
                    continue
                if await self._select_row(row, reason="first_available"):
                    return None
        else:
            # No recognizable rows: the first enabled select control on the page
            select = await self._resolver.probe(handle.surface, target("category_any_select"))
            if select:
                await self._log(
                    EventType.WARN, "category_positional",
                    "Category rows not recognized, clicking first available select control",
                    heuristic="positional"
                )
                self.category_attempts += 1
                if await self._click(select, "category_selected", "Clicked first available select control"):
                    self.selected_category = None
                    await self._sleep(WAIT_SECONDS_SELECTION)
                    return None

        await self._handle_error("category", "No available ticket categories found!")
        return FlowResult.category_unavailable(
            "No available ticket categories found. Please try manually.",
            keywords=list(keywords),
            attempts=self.category_attempts
        )

    # ------------------------------------------------------------------
    # Step 5: quantity
    # ------------------------------------------------------------------

    def _quantity_option_candidates(self, amount: int) -> Candidates:
        text = str(amount)
        return Candidates.of("quantity_option", [
            f'[role="option"]:text-is("{text}")',
            f'li:text-is("{text}")',
            f'div:text-is("{text}")',
            f'span:text-is("{text}")',
            f'p:text-is("{text}")',
        ])

    async def _quantity_by_input(self, surface: Surface, amount: int) -> bool:
        match = await self._resolver.probe(surface, target("quantity_input"))
        if not match:
            return False
        try:
            await match.locator.fill("")
            await match.locator.fill(str(amount))
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._log(EventType.WARN, "quantity_input_failed", f"Error setting quantity: {e}", selector=match.selector)
            return False
        await self._log(EventType.SUCCESS, "quantity_set", f"Quantity set to {amount}", selector=match.selector, method="input")
        return True

    async def _quantity_by_option(self, surface: Surface, amount: int) -> bool:
        match = await self._resolver.probe(surface, self._quantity_option_candidates(amount))
        if not match:
            return False
        return await self._click(match, "quantity_set", f"Selected quantity: {amount}", method="option")

    async def _quantity_by_plus(self, surface: Surface, amount: int) -> bool:
        match = await self._resolver.probe(surface, target("quantity_plus"))
        if not match:
            return False
        try:
            for _ in range(amount - 1):
                await match.locator.click(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
                await self._sleep(WAIT_SECONDS_QUANTITY_STEP)
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._log(EventType.WARN, "quantity_plus_failed", f"Error setting quantity: {e}", selector=match.selector)
            return False
        await self._log(
            EventType.SUCCESS, "quantity_set", f"Quantity set to {amount} using plus button",
            selector=match.selector, method="plus"
        )
        return True

    async def _step_set_quantity(self, handle: PageHandle) -> None:
        self._update_state(FlowState.QUANTITY_SETTING)
        amount = self.config.ticket_amount
        await self._log(EventType.INFO, "quantity_start", f"Setting quantity to {amount}...")

        surface = handle.surface
        done = (
            await self._quantity_by_input(surface, amount)
            or await self._quantity_by_option(surface, amount)
            or await self._quantity_by_plus(surface, amount)
        )
        if not done:
            await self._log(EventType.WARN, "quantity_default", "Could not find quantity selector, proceeding with default quantity")

        await self._sleep(WAIT_SECONDS_UI_SETTLE)
        await self._confirm_selection(handle)

    async def _confirm_selection(self, handle: PageHandle) -> None:
        """Order/proceed button under the ticket list, then one continue if the form is not up yet."""
        order = await self._resolver.probe(handle.surface, target("order_button"))
        if order and await self._click(order, "order_clicked", "Clicked proceed button!"):
            await self._sleep(WAIT_SECONDS_FORM_LOAD)

        if await self._resolver.probe(handle.surface, target("field_email")):
            return
        next_button = await self._resolver.probe(handle.surface, target("next_button"))
        if next_button:
            await self._click(next_button, "checkout_clicked", "Clicked checkout/continue button")

    # ------------------------------------------------------------------
    # Step 6: identity form
    # ------------------------------------------------------------------

    async def _fill_field(self, surface: Surface, label: str, candidates: Candidates, value: str) -> bool:
        match = await self._resolver.probe(surface, candidates)
        if not match:
            await self._log(EventType.WARN, "field_missing", f"Could not find field for: {label}", field=label)
            return False
        try:
            await match.locator.fill(value)
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._log(EventType.WARN, "field_failed", f"Could not fill {label}: {e}", field=label, selector=match.selector)
            return False
        await self._log(EventType.SUCCESS, "field_filled", f"Filled {label}: {_preview(value)}", field=label, selector=match.selector)
        return True

    async def _unnamed_empty_input(self, surface: Surface) -> Optional[Match]:
        """First visible text input with no name and no value."""
        group = await self._resolver.collect(surface, target("text_inputs"))
        if not group:
            return None
        for index in range(await group.locator.count()):
            candidate = group.locator.nth(index)
            try:
                name = await candidate.get_attribute("name")
                value = await candidate.input_value()
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
            if not name and not value:
                return Match("phone_positional", f"{group.selector} >> nth={index}", index, candidate)
        return None

    async def _fill_phone(self, surface: Surface, phone: str) -> bool:
        """
        Type the phone number key by key and verify it. Numeric inputs may
        drop the leading zero; that is accepted, any other value is not.
        """
        match = await self._resolver.probe(surface, target("field_phone"))
        if not match:
            match = await self._unnamed_empty_input(surface)
            if match:
                await self._log(
                    EventType.WARN, "phone_positional",
                    f"Phone field not labeled, using input {match.index + 1}",
                    heuristic="positional"
                )
        if not match:
            await self._log(EventType.WARN, "field_missing", "Could not find field for: Phone", field="Phone")
            return False

        try:
            await match.locator.click(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
            await match.locator.fill("")
            await match.locator.press_sequentially(phone, delay=PHONE_TYPE_DELAY_MS)
            value = await match.locator.input_value()
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._log(EventType.WARN, "field_failed", f"Phone fill error: {e}", field="Phone", selector=match.selector)
            return False

        check = check_phone_value(phone, value)
        if check is PhoneCheck.MISMATCH:
            await self._log(
                EventType.WARN, "phone_mismatch", f"Phone value after type: {value}",
                expected=phone, actual=value, selector=match.selector
            )
            return False
        await self._log(
            EventType.SUCCESS, "field_filled", f"Filled Phone: {_preview(value, 8)}",
            field="Phone", selector=match.selector, check=check.value
        )
        return True

    async def _select_gender(self, surface: Surface, gender: str) -> bool:
        await self._log(EventType.INFO, "gender_search", f"Looking for Gender field ({gender})...")
        match = await self._resolver.probe(surface, gender_candidates(gender))
        if match and await self._click(match, "gender_selected", f"Selected Gender: {gender}"):
            return True

        radios = await self._resolver.collect(surface, target("radio_inputs"))
        count = await radios.locator.count() if radios else 0
        if count >= 2:
            index = GENDER_POSITIONS[gender]
            positional = Match("gender", f"{radios.selector} >> nth={index}", index, radios.locator.nth(index))
            await self._log(
                EventType.WARN, "gender_positional",
                f"Trying gender by position: radio {index + 1} of {count}", heuristic="positional"
            )
            if await self._click(positional, "gender_selected", f"Selected Gender by position: {gender}"):
                return True

        await self._log(EventType.WARN, "gender_missing", "Could not set Gender - no visible radio buttons found")
        return False

    async def _open_header(self, surface: Surface, pattern: "re.Pattern") -> bool:
        header = surface.locator("button, div").filter(has_text=pattern).first
        try:
            if not await header.is_visible():
                return False
            await header.click(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            return False
        await self._sleep(WAIT_SECONDS_UI_SETTLE)
        return True

    async def _pick_year(self, surface: Surface, year: int) -> bool:
        await self._open_header(surface, YEAR_HEADER)
        text = str(year)
        match = await self._resolver.probe(surface, Candidates.of("dob_year", [
            f'text="{text}"',
            f'[role="option"]:text-is("{text}")',
            f'button:text-is("{text}")',
        ]))
        if match and await self._click(match, "dob_year", f"Selected year: {text}"):
            return True

        options = await self._resolver.collect(surface, Candidates.of("dob_year_options", [
            '[class*="year"] [role="option"]',
            '[class*="year"] button',
            '[role="option"]',
        ]))
        if options and await options.locator.count() >= 2:
            try:
                first = await options.locator.nth(0).inner_text()
                second = await options.locator.nth(1).inner_text()
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                return False
            index = year_offset(first, second, year)
            if index is not None and index < await options.locator.count():
                positional = Match("dob_year", f"{options.selector} >> nth={index}", index, options.locator.nth(index))
                await self._log(EventType.WARN, "dob_year_positional", f"Year {text} picked by position {index + 1}", heuristic="positional")
                return await self._click(positional, "dob_year", f"Selected year: {text}")
        return False

    async def _pick_month(self, surface: Surface, month: int) -> bool:
        await self._open_header(surface, MONTH_HEADER)
        names = [MONTH_NAMES["id"][month - 1], MONTH_NAMES["en"][month - 1]]
        selectors = [f'text="{name}"' for name in names]
        selectors += [f'[role="option"]:has-text("{name[:3]}")' for name in names]
        match = await self._resolver.probe(surface, Candidates.of("dob_month", selectors))
        if match and await self._click(match, "dob_month", f"Selected month: {names[0]}"):
            return True

        options = await self._resolver.collect(surface, Candidates.of("dob_month_options", [
            '[class*="month"] [role="option"]',
            '[class*="month"] button',
            '[role="option"]',
        ]))
        if options and await options.locator.count() == 12:
            index = month - 1
            positional = Match("dob_month", f"{options.selector} >> nth={index}", index, options.locator.nth(index))
            await self._log(EventType.WARN, "dob_month_positional", f"Month {month} picked by position", heuristic="positional")
            return await self._click(positional, "dob_month", f"Selected month: {names[0]}")
        return False

    async def _pick_day(self, surface: Surface, day: int) -> bool:
        texts = [str(day)] if day >= 10 else [str(day), f"{day:02d}"]
        selectors = []
        for text in texts:
            selectors += [
                f'[role="gridcell"]:text-is("{text}")',
                f'.calendar-day:text-is("{text}")',
                f'td:text-is("{text}")',
                f'button:text-is("{text}")',
            ]
        match = await self._resolver.probe(surface, Candidates.of("dob_day", selectors))
        if match and await self._click(match, "dob_day", f"Selecting day: {day}"):
            return True

        cells = await self._resolver.collect(surface, target("dob_day_cells"))
        if cells and await cells.locator.count() >= day:
            index = day - 1
            positional = Match("dob_day", f"{cells.selector} >> nth={index}", index, cells.locator.nth(index))
            await self._log(EventType.WARN, "dob_day_positional", f"Day {day} picked by position", heuristic="positional")
            return await self._click(positional, "dob_day", f"Selecting day: {day}")
        return False

    async def _select_birth_date(self, surface: Surface, birth: date) -> bool:
        """Open the date picker, then year, month and day in that order."""
        month_name = MONTH_NAMES["id"][birth.month - 1]
        await self._log(EventType.INFO, "dob_search", f"Target DOB: {birth.day} {month_name} {birth.year}")

        trigger = await self._resolver.probe(surface, target("dob_trigger"))
        if not trigger:
            await self._log(EventType.WARN, "dob_missing", "Could not find \"Select Date of Birth\" trigger")
            return False
        if not await self._click(trigger, "dob_opened", "Opened date of birth picker"):
            return False
        await self._sleep(WAIT_SECONDS_UI_SETTLE)
        await self._resolver.resolve(surface, target("dob_popover"), TIMEOUT_MS_POPOVER)

        picked = {
            "year": await self._pick_year(surface, birth.year),
            "month": await self._pick_month(surface, birth.month),
            "day": await self._pick_day(surface, birth.day),
        }
        missing = [part for part, ok in picked.items() if not ok]
        if missing:
            await self._log(EventType.WARN, "dob_partial", f"Could not select DOB {', '.join(missing)}", **picked)
            return False
        await self._log(EventType.SUCCESS, "dob_set", f"Successfully set DOB to {birth.day} {month_name} {birth.year}")
        return True

    async def _accept_terms(self, surface: Surface) -> bool:
        match = await self._resolver.probe(surface, target("terms_checkbox"))
        if not match:
            return False
        try:
            if await match.locator.is_checked():
                return True
            await match.locator.check(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
        except PlaywrightError as e:
            if is_target_closed(e):
                raise
            await self._log(EventType.WARN, "terms_failed", f"Could not accept terms: {e}", selector=match.selector)
            return False
        await self._log(EventType.SUCCESS, "terms_accepted", "Accepted terms and conditions", selector=match.selector)
        return True

    async def _step_fill_form(self, handle: PageHandle) -> Dict[str, bool]:
        self._update_state(FlowState.FORM_FILLING)
        await self._log(EventType.INFO, "form_start", "Filling personal data form...")
        await self._sleep(WAIT_SECONDS_FORM_LOAD)

        data = self.config.personal_data
        surface = handle.surface
        filled = {
            "name": await self._fill_field(surface, "Name", target("field_name"), data.name),
            "nik": await self._fill_field(surface, "NIK", target("field_national_id"), data.nik),
            "email": await self._fill_field(surface, "Email", target("field_email"), data.email),
            "phone": await self._fill_phone(surface, data.phone),
        }
        if data.domisili:
            filled["domisili"] = await self._fill_field(surface, "Domisili", target("field_domicile"), data.domisili)
        if data.gender:
            filled["gender"] = await self._select_gender(surface, data.gender)
        if data.birth_date:
            filled["dob"] = await self._select_birth_date(surface, data.birth_date)
        filled["terms"] = await self._accept_terms(surface)

        await self._log(EventType.SUCCESS, "form_complete", "Form filling complete!", **filled)
        return filled

    # ------------------------------------------------------------------
    # Step 7: checkout
    # ------------------------------------------------------------------

    async def _step_advance_checkout(self, handle: PageHandle) -> bool:
        """Click continue/pay until payment methods are visible. True if they are."""
        self._update_state(FlowState.CHECKOUT_ADVANCING)
        await self._log(EventType.INFO, "checkout_start", "Navigating to payment page...")

        for attempt in range(MAX_CONTINUE_CLICKS):
            await self._sleep(WAIT_SECONDS_CHECKOUT_STEP)

            if await self._resolver.exists(handle.surface, target("payment_surface")):
                await self._log(EventType.SUCCESS, "payment_reached", "REACHED PAYMENT PAGE!", attempt=attempt + 1)
                return True

            match = (
                await self._resolver.probe(handle.surface, target("next_button"))
                or await self._resolver.probe(handle.surface, target("pay_button"))
            )
            if not match:
                await self._log(EventType.WARN, "checkout_no_button", "No clickable buttons found, checking if on payment page...")
                return False
            await self._click(match, "checkout_clicked", f"Clicked {match.name.replace('_', ' ')}", attempt=attempt + 1)

        return await self._resolver.exists(handle.surface, target("payment_surface"))

    # ------------------------------------------------------------------
    # Step 8: payment method
    # ------------------------------------------------------------------

    def _payment_category_candidates(self, category: str) -> Candidates:
        return Candidates.of("payment_category", [
            f'[class*="accordion"] >> text="{category}"',
            f'div[class*="payment"] >> text="{category}"',
            f'div[class*="card"] >> text="{category}"',
            f'text="{category}"',
            f'div:has(> div:text-is("{category}"))',
        ])

    def _payment_method_candidates(self, pref: PaymentPreference) -> Candidates:
        label = f"{pref.category} {pref.method}"
        method = pref.method
        return Candidates.of("payment_method", [
            f'text="{label}"',
            f'label:has-text("{label}")',
            f'span:has-text("{label}")',
            f'input[type="radio"] + *:has-text("{method}")',
            f'label:has-text("{method}")',
            f'div:has(> img[alt*="{method}"])',
            f'img[alt*="{method}"]',
            f'img[src*="{method.lower()}"]',
        ])

    async def _choose_payment_method(self, surface: Surface, pref: PaymentPreference) -> bool:
        match = await self._resolver.probe(surface, self._payment_method_candidates(pref))
        if match and await self._click(match, "payment_method_selected", f"Clicked on {pref.category} {pref.method}"):
            await self._sleep(WAIT_SECONDS_SELECTION)
            return True

        radios = await self._resolver.collect(surface, target("radio_inputs"))
        if radios and await radios.locator.count() > pref.fallback_index:
            index = pref.fallback_index
            positional = Match("payment_method", f"{radios.selector} >> nth={index}", index, radios.locator.nth(index))
            await self._log(
                EventType.WARN, "payment_method_positional",
                f"{pref.method} not found by text, clicking radio {index + 1}", heuristic="positional"
            )
            return await self._click(positional, "payment_method_selected", f"Clicked {pref.method} radio by position")

        await self._log(EventType.WARN, "payment_method_missing", f"Could not find {pref.method} option")
        return False

    async def _check_all_boxes(self, surface: Surface) -> int:
        group = await self._resolver.collect(surface, target("checkboxes"))
        if not group:
            return 0
        count = await group.locator.count()
        await self._log(EventType.INFO, "checkboxes_found", f"Found {count} visible checkboxes")

        checked = 0
        for index in range(count):
            box = group.locator.nth(index)
            try:
                if await box.is_checked():
                    continue
                await box.click(timeout=TIMEOUT_MS_ELEMENT_VISIBLE)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                await self._log(EventType.WARN, "checkbox_failed", f"Checkbox {index + 1} error: {e}")
                continue
            checked += 1
            await self._log(EventType.SUCCESS, "checkbox_checked", f"Checked checkbox {index + 1}")
            await self._sleep(WAIT_SECONDS_UI_SETTLE)
        return checked

    async def _step_select_payment(self, handle: PageHandle) -> Dict[str, Any]:
        self._update_state(FlowState.PAYMENT_METHOD_SELECTING)
        pref = self.config.payment
        await self._log(EventType.INFO, "payment_start", "Looking for payment method selection...")
        await self._sleep(WAIT_SECONDS_PAYMENT_LOAD)

        surface = handle.surface
        category = await self._resolver.probe(surface, self._payment_category_candidates(pref.category))
        category_clicked = False
        if category:
            category_clicked = await self._click(category, "payment_category_opened", f"Clicked on {pref.category} header")
            if category_clicked:
                await self._sleep(WAIT_SECONDS_ACCORDION)
        else:
            await self._log(EventType.WARN, "payment_category_missing", f"Could not find {pref.category} option")

        method_clicked = await self._choose_payment_method(surface, pref)
        await self._sleep(WAIT_SECONDS_POPUP_SETTLE)

        checked = await self._check_all_boxes(surface)
        await self._sleep(WAIT_SECONDS_UI_SETTLE)

        confirmed = False
        pay_now = await self._resolver.probe(surface, target("pay_now_button"))
        if pay_now:
            confirmed = await self._click(pay_now, "pay_now_clicked", "Clicked Pay Now button!")
            if confirmed:
                await self._sleep(WAIT_SECONDS_PAYMENT_LOAD)
        else:
            await self._log(EventType.WARN, "pay_now_missing", "Could not find Pay Now button - may need to check checkboxes first")

        return {
            "category_selected": category_clicked,
            "method_selected": method_clicked,
            "checkboxes_checked": checked,
            "confirmed": confirmed,
        }

    # ------------------------------------------------------------------
    # Step 9: reference
    # ------------------------------------------------------------------

    async def _step_extract_reference(self, handle: PageHandle, payment: Dict[str, Any]) -> Optional[str]:
        self._update_state(FlowState.REFERENCE_EXTRACTING)
        await self._log(EventType.INFO, "reference_wait", "Waiting for VA number to appear...")
        await self._sleep(WAIT_SECONDS_REFERENCE)

        reference = await self._extractor.extract(handle.surface)
        pref = self.config.payment
        if reference:
            await self._log(EventType.SUCCESS, "payment_ready", f"PAYMENT READY! VA {pref.method} NUMBER: {reference}", reference=reference)
        elif payment.get("category_selected") and payment.get("method_selected"):
            await self._log(
                EventType.SUCCESS, "payment_selected",
                f"{pref.category} {pref.method} selected! Check browser for VA number."
            )
        else:
            await self._log(EventType.WARN, "payment_incomplete", "Payment flow may not be complete. Please check browser.")
        return reference
