"""
Probe Interface

The only way the healing engine talks to a browser. A probe reports the
facts of an element (inspect), resolves selectors (query / wait_for) and
describes the page it is attached to (page_context).

Handles are opaque to the engine; only the probe that produced a handle
knows how to inspect it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional


@dataclass
class PageContext:
    """Snapshot of page-level traits used by adaptive healing"""
    frameworks: List[str] = field(default_factory=list)  # e.g. ["react", "angular"]
    theme: Optional[str] = None  # "dark" / "light"
    has_modals: bool = False
    has_animations: bool = False
    url: str = ""
    title: str = ""
    language: Optional[str] = None
    viewport: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frameworks": list(self.frameworks),
            "theme": self.theme,
            "has_modals": self.has_modals,
            "has_animations": self.has_animations,
            "url": self.url,
            "title": self.title,
            "language": self.language,
            "viewport": self.viewport,
        }


class Probe(ABC):
    """
    Abstract browser probe.

    Implementations must raise ProbeUnavailable when the underlying page is
    gone and CandidateInvalid for selectors the engine cannot evaluate.
    A selector that simply matches nothing returns None.
    """

    @abstractmethod
    async def inspect(self, handle: Any) -> Dict[str, Any]:
        """
        Report the facts of an element.

        Returns:
            Dict accepted by signature.capture()
        """

    @abstractmethod
    async def query(self, selector: str) -> Optional[Any]:
        """Return a handle for the first match of selector, or None"""

    @abstractmethod
    async def wait_for(self, selector: str, timeout_ms: int) -> Optional[Any]:
        """Wait up to timeout_ms for selector to match; None on timeout"""

    async def page_context(self) -> PageContext:
        """Describe the current page. Probes without page insight report nothing."""
        return PageContext()
