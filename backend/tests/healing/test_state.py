"""
Unit tests for HealingState and CandidateCache.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from healing.config import HealingConfig
from healing.core.signature import capture
from healing.core.selector_generator import SelectorCandidate, SelectorStrategy
from healing.core.state import HealingState, CandidateCache
from healing.knowledge.candidate_scorer import TrainingSample


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _candidate():
    return SelectorCandidate(SelectorStrategy.ID, "#a", 0.95, 100)


class TestCandidateCache:
    """Test candidate cache expiry."""

    def test_entry_expires_at_timeout(self):
        """Test that an entry is served until the timeout elapses."""
        clock = FakeClock()
        cache = CandidateCache(timeout_ms=1000, clock=clock)
        cache.put("k", [_candidate()])

        clock.now = 0.999
        assert cache.get("k")[0].selector == "#a"

        clock.now = 1.0
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_zero_timeout_disables(self):
        """Test that a zero timeout never stores anything."""
        cache = CandidateCache(timeout_ms=0)
        cache.put("k", [_candidate()])

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_purge_expired(self):
        """Test sweeping expired entries."""
        clock = FakeClock()
        cache = CandidateCache(timeout_ms=1000, clock=clock)
        cache.put("old", [_candidate()])
        clock.now = 0.5
        cache.put("new", [_candidate()])

        clock.now = 1.2

        assert cache.purge_expired() == 1
        assert cache.get("new") is not None


class TestHealingState:
    """Test the element registry and training buffer."""

    def test_history_is_bounded(self, make_facts):
        """Test that only the newest signatures are kept."""
        state = HealingState(HealingConfig(history_limit=2))
        for text in ("one", "two", "three"):
            state.track("login", capture(make_facts(text_content=text)))

        history = state.history("login")

        assert [s.text_content for s in history] == ["two", "three"]
        assert state.get("login").latest.text_content == "three"

    def test_track_merges_metadata(self, button_facts):
        """Test that re-registering merges metadata."""
        state = HealingState()
        state.track("login", capture(button_facts), {"page": "login"})
        state.track("login", capture(button_facts), {"owner": "qa"})

        assert state.get("login").metadata == {"page": "login", "owner": "qa"}

    def test_forget_clears_ledger_pairs(self, button_facts):
        """Test that forgetting an element drops its ledger history."""
        state = HealingState()
        state.track("login", capture(button_facts))
        state.ledger.record_probe("login", "#login-btn", True, 5)

        assert state.forget("login") is True
        assert state.forget("login") is False
        assert state.ledger.top_selectors_for("login") == []

    def test_training_buffer(self):
        """Test that the buffer reports readiness and drains."""
        state = HealingState(HealingConfig(training_threshold=2))

        assert state.add_training_sample(TrainingSample("id", "#a", True)) is False
        assert state.add_training_sample(TrainingSample("id", "#b", False)) is True
        assert len(state.drain_training_samples()) == 2
        assert state.pending_training_samples == 0

    def test_clear(self, button_facts):
        """Test clearing all state."""
        state = HealingState()
        state.track("login", capture(button_facts))
        state.cache.put("k", [_candidate()])

        state.clear()

        assert state.elements == {}
        assert len(state.cache) == 0
