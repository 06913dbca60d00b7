"""
Pytest configuration and shared fixtures for the healing tests.
"""

import asyncio
import pytest
import sys
from pathlib import Path
from unittest.mock import Mock, AsyncMock
from typing import Dict, Any, List, Optional, Set, Tuple

# Add backend app to path
sys.path.insert(0, str(Path(__file__).parent.parent / "app"))

from healing.core.exceptions import ProbeUnavailable
from healing.core.probe import Probe, PageContext


# ==================== Fake Probe ====================

class FakeHandle:
    """Handle returned by FakeProbe; carries the facts it was resolved from."""

    def __init__(self, selector: str, facts: Dict[str, Any]):
        self.selector = selector
        self.facts = facts

    def __repr__(self):
        return f"FakeHandle({self.selector!r})"


class FakeProbe(Probe):
    """
    In-memory probe.

    elements maps selector -> facts dict; a selector that is not a key
    matches nothing. raise_on maps selector -> exception to raise, and
    selectors in hang_on never resolve.
    Every call is recorded in calls as (method, selector).
    """

    def __init__(self, elements: Optional[Dict[str, Dict[str, Any]]] = None,
                 context: Optional[PageContext] = None):
        self.elements = dict(elements or {})
        self.context = context or PageContext()
        self.raise_on: Dict[str, Exception] = {}
        self.hang_on: Set[str] = set()
        self.unavailable = False
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def _resolve(self, selector: str):
        if selector in self.hang_on:
            await asyncio.Event().wait()
        if self.unavailable:
            raise ProbeUnavailable("Target page, context or browser has been closed")
        if selector in self.raise_on:
            raise self.raise_on[selector]
        facts = self.elements.get(selector)
        return FakeHandle(selector, facts) if facts is not None else None

    async def inspect(self, handle) -> Dict[str, Any]:
        self.calls.append(("inspect", handle.selector))
        return dict(handle.facts)

    async def query(self, selector: str):
        self.calls.append(("query", selector))
        return await self._resolve(selector)

    async def wait_for(self, selector: str, timeout_ms: int):
        self.calls.append(("wait_for", selector))
        return await self._resolve(selector)

    async def page_context(self) -> PageContext:
        self.calls.append(("page_context", None))
        if self.unavailable:
            raise ProbeUnavailable("Target page, context or browser has been closed")
        return self.context

    @property
    def probed(self) -> List[str]:
        """Selectors probed so far, in order"""
        return [selector for method, selector in self.calls if method in ("query", "wait_for")]


@pytest.fixture
def fake_probe():
    """Create an empty fake probe."""
    return FakeProbe()


# ==================== Element Facts ====================

def _button_facts(**overrides) -> Dict[str, Any]:
    facts = {
        "tag_name": "button",
        "text_content": "Sign in",
        "attributes": {"id": "login-btn", "class": "btn btn-primary", "data-testid": "login"},
        "position": {"x": 100, "y": 200, "width": 80, "height": 30},
        "parent_tag": "form",
        "siblings_count": 3,
        "computed_styles": {
            "display": "inline-block",
            "visibility": "visible",
            "opacity": "1",
            "fontSize": "14px",
            "color": "rgb(0, 0, 0)",
        },
        "structure": {
            "depth": 5,
            "children_count": 0,
            "is_interactive": True,
            "is_visible": True,
            "sibling_index": 3,
        },
        "timestamp": "2024-01-01T00:00:00",
    }
    facts.update(overrides)
    return facts


@pytest.fixture
def make_facts():
    """Factory for login button facts; keyword arguments replace top-level keys."""
    return _button_facts


@pytest.fixture
def button_facts() -> Dict[str, Any]:
    """Facts for a typical login button."""
    return _button_facts()


# ==================== Mock Page Fixture ====================

@pytest.fixture
def mock_page():
    """Create a mock Playwright page object."""
    page = AsyncMock()

    page.url = "https://example.com/login"
    page.goto = AsyncMock(return_value=None)
    page.close = AsyncMock()

    # Evaluation
    page.evaluate = AsyncMock(return_value={})

    # Selectors
    handle = AsyncMock()
    handle.evaluate = AsyncMock(return_value=_button_facts())
    page.query_selector = AsyncMock(return_value=handle)
    page.wait_for_selector = AsyncMock(return_value=handle)

    return page
