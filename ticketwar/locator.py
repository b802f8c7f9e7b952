"""
Ordered-candidate element resolution.

A target is described by an ordered tuple of selectors. Resolution walks the
tuple in order and returns the first element that is visible and enabled.
"Nothing matched" is returned as None: Playwright errors raised while probing
a single candidate (rejected selector syntax, detached node, probe timeout)
only mean that candidate did not match. A closed page, context or browser is
not a miss and propagates, as does anything else.
"""

import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError, Locator

from ticketwar.models import is_target_closed, Surface


# Short fixed probe per candidate in non-blocking mode
TIMEOUT_MS_SELECTOR_CHECK = int(os.getenv("TIMEOUT_MS_SELECTOR_CHECK", "150"))


@dataclass(frozen=True)
class Candidates:
    """Ordered strategies for finding one logical UI target."""
    name: str
    selectors: Tuple[str, ...]

    @classmethod
    def of(cls, name: str, selectors: Sequence[str]) -> "Candidates":
        return cls(name, tuple(selectors))

    def __len__(self) -> int:
        return len(self.selectors)


@dataclass(frozen=True)
class Match:
    """The candidate that won, and the element it resolved to."""
    name: str
    selector: str
    index: int
    locator: Locator


class LocatorResolver:
    """Finds elements from ordered candidates. Never clicks or mutates."""

    def __init__(self, probe_timeout_ms: int = TIMEOUT_MS_SELECTOR_CHECK):
        self.probe_timeout_ms = probe_timeout_ms

    async def _is_interactable(self, locator: Locator) -> bool:
        # is_visible() does not wait; is_enabled() would wait for attachment
        if not await locator.is_visible():
            return False
        return await locator.is_enabled(timeout=self.probe_timeout_ms)

    async def probe(self, surface: Surface, candidates: Candidates) -> Optional[Match]:
        """Single immediate check per candidate, no waiting."""
        for index, selector in enumerate(candidates.selectors):
            try:
                locator = surface.locator(selector).first
                if await self._is_interactable(locator):
                    return Match(candidates.name, selector, index, locator)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
        return None

    async def resolve(
        self,
        surface: Surface,
        candidates: Candidates,
        timeout_ms: int
    ) -> Optional[Match]:
        """
        Blocking resolution for required elements.

        The timeout budget is split evenly across candidates, so a run that
        matches nothing takes roughly `timeout_ms` in total.
        """
        if not candidates.selectors:
            return None

        per_candidate = max(timeout_ms // len(candidates), self.probe_timeout_ms)
        for index, selector in enumerate(candidates.selectors):
            try:
                locator = surface.locator(selector).first
                await locator.wait_for(state="visible", timeout=per_candidate)
                if await locator.is_enabled(timeout=self.probe_timeout_ms):
                    return Match(candidates.name, selector, index, locator)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
        return None

    async def exists(self, surface: Surface, candidates: Candidates) -> bool:
        """True if any candidate is currently present and visible."""
        for selector in candidates.selectors:
            try:
                if await surface.locator(selector).first.is_visible():
                    return True
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
        return False

    async def collect(self, surface: Surface, candidates: Candidates) -> Optional[Match]:
        """
        First candidate matching at least one element.

        The returned locator addresses every element the selector matched, for
        callers that iterate a group (rows, radios, checkboxes).
        """
        for index, selector in enumerate(candidates.selectors):
            try:
                locator = surface.locator(selector)
                if await locator.count() > 0:
                    return Match(candidates.name, selector, index, locator)
            except PlaywrightError as e:
                if is_target_closed(e):
                    raise
                continue
        return None
