"""
Flow states, run result and the authoritative page handle.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from playwright._impl._errors import TargetClosedError
from playwright.async_api import Error as PlaywrightError, Frame, Page


Surface = Union[Page, Frame]


def is_target_closed(error: PlaywrightError) -> bool:
    """
    True when the page, context or browser behind a call is gone.

    Such an error is never a candidate miss: nothing on the session can
    match again, so callers re-raise it.
    """
    return isinstance(error, TargetClosedError) or "has been closed" in str(error)


class FlowState(str, Enum):
    """States in the ticket acquisition flow."""
    IDLE = "idle"
    AWAITING_AVAILABILITY = "awaiting_availability"
    ACTION_TRIGGERED = "action_triggered"
    CATEGORY_SELECTING = "category_selecting"
    QUANTITY_SETTING = "quantity_setting"
    FORM_FILLING = "form_filling"
    CHECKOUT_ADVANCING = "checkout_advancing"
    PAYMENT_METHOD_SELECTING = "payment_method_selecting"
    REFERENCE_EXTRACTING = "reference_extracting"
    COMPLETED = "completed"
    CATEGORY_UNAVAILABLE = "category_unavailable"
    ABORTED = "aborted"


TERMINAL_STATES = (FlowState.COMPLETED, FlowState.CATEGORY_UNAVAILABLE, FlowState.ABORTED)


@dataclass
class FlowResult:
    """Result of a flow execution."""
    success: bool
    state: FlowState
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    reference: Optional[str] = None

    @classmethod
    def completed(cls, reference: Optional[str], message: str, **details) -> "FlowResult":
        return cls(True, FlowState.COMPLETED, message, details, reference)

    @classmethod
    def category_unavailable(cls, message: str, **details) -> "FlowResult":
        return cls(False, FlowState.CATEGORY_UNAVAILABLE, message, details)

    @classmethod
    def aborted(cls, reason: str, **details) -> "FlowResult":
        return cls(False, FlowState.ABORTED, reason, details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "message": self.message,
            "reference": self.reference,
            "details": self.details,
        }


class PageHandle:
    """
    The engine's live handle to the authoritative browsing surface.

    The surface starts as the page the run navigated, and only changes
    through transfer() when a popup or an embedded widget frame takes over.
    Once transferred, the previous surface is never interacted with again.
    """

    def __init__(self, page: Page):
        self._page = page
        self._surface: Surface = page
        self._transfers: List[Dict[str, str]] = []

    @property
    def page(self) -> Page:
        """Top-level page that owns the current surface."""
        return self._page

    @property
    def surface(self) -> Surface:
        return self._surface

    @property
    def url(self) -> str:
        return self._surface.url

    def ensure_open(self) -> None:
        """Raise TargetClosedError once the owning page has been closed."""
        if self._page.is_closed():
            raise TargetClosedError()

    @property
    def transfers(self) -> List[Dict[str, str]]:
        return list(self._transfers)

    def transfer(self, surface: Surface, reason: str) -> None:
        """Make `surface` authoritative. Frames keep their parent page as owner."""
        # Frame.page is the owning page; a Page has no such attribute
        owner = getattr(surface, "page", None)
        self._page = owner if owner is not None else surface
        self._surface = surface
        self._transfers.append({"reason": reason, "url": surface.url})
