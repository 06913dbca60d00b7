"""
Unit tests for HealingOrchestrator.

Tests stage ordering, the similarity gate, attempt budgets and outcomes,
using an in-memory probe.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from healing.config import HealingConfig
from healing.core.exceptions import ProbeUnavailable, CandidateInvalid
from healing.core.probe import PageContext
from healing.core.signature import capture
from healing.core.selector_generator import SelectorGenerator
from healing.core.state import HealingState
from healing.core.orchestrator import (
    HealingOrchestrator,
    HealingOptions,
    HealingStage,
    NotFound,
)
from healing.knowledge.candidate_scorer import HeuristicCandidateScorer


def _orchestrator(probe, config=None):
    state = HealingState(config or HealingConfig())
    return HealingOrchestrator(probe, SelectorGenerator(), HeuristicCandidateScorer(), state)


WRONG_ELEMENT = {
    "tag_name": "a",
    "text_content": "Help",
    "attributes": {"href": "/help"},
    "position": {"x": 900, "y": 900, "width": 10, "height": 10},
}


class TestPrimaryStage:
    """Test the primary selector stage."""

    @pytest.mark.asyncio
    async def test_primary_short_circuits(self, fake_probe, button_facts):
        """Test that a working primary selector ends the run immediately."""
        fake_probe.elements["#login-btn"] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#login-btn", [capture(button_facts)])

        assert result.found
        assert result.stage == HealingStage.PRIMARY_SELECTOR
        assert result.similarity == pytest.approx(1.0)
        assert result.model_similarity is not None
        assert fake_probe.calls == [("wait_for", "#login-btn"), ("inspect", "#login-btn")]
        assert result.attempts["primary_selector"] == 1
        assert sum(result.attempts.values()) == 1

    @pytest.mark.asyncio
    async def test_no_history_accepts_primary_without_gate(self, fake_probe, button_facts):
        """Test that without history the primary match is accepted as is."""
        fake_probe.elements["#login-btn"] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#login-btn", [])

        assert result.found
        assert result.similarity is None

    @pytest.mark.asyncio
    async def test_no_history_skips_later_stages(self, fake_probe):
        """Test that nothing beyond the primary selector runs without history."""
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#gone", [])

        assert isinstance(result, NotFound)
        assert fake_probe.probed == ["#gone"]
        assert any("no signature history" in reason for reason in result.reasons)

    @pytest.mark.asyncio
    async def test_gate_rejects_lookalike(self, fake_probe, button_facts):
        """Test that a dissimilar element under the old selector is rejected."""
        fake_probe.elements["#login-btn"] = WRONG_ELEMENT
        fake_probe.elements['[data-testid="login"]'] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#login-btn", [capture(button_facts)])

        assert result.found
        assert result.stage == HealingStage.HISTORY_BASED
        assert result.selector == '[data-testid="login"]'
        assert any("below threshold" in reason for reason in result.reasons)
        # The rejected selector is not tried twice
        assert fake_probe.probed.count("#login-btn") == 1


class TestCachedStage:
    """Test the cached selectors stage."""

    @pytest.mark.asyncio
    async def test_reliable_cached_selector(self, fake_probe, button_facts):
        """Test that a selector with a good track record is used next."""
        fake_probe.elements["#new-login"] = button_facts
        orchestrator = _orchestrator(fake_probe)
        for success in [True] * 9 + [False]:
            orchestrator.state.ledger.record_probe("login", "#new-login", success, 10)

        result = await orchestrator.heal("login", "#old-login", [capture(button_facts)])

        assert result.stage == HealingStage.CACHED_SELECTORS
        assert result.selector == "#new-login"
        assert fake_probe.probed == ["#old-login", "#new-login"]

    @pytest.mark.asyncio
    async def test_changed_element_within_threshold(self, fake_probe, button_facts, make_facts):
        """Test that a cached selector whose element drifted a little is accepted."""
        fake_probe.elements["#new-login"] = make_facts(
            text_content="Sign on",
            attributes={"id": "login-btn", "class": "btn btn-secondary", "data-testid": "login"},
        )
        orchestrator = _orchestrator(fake_probe)
        for success in [True] * 9 + [False]:
            orchestrator.state.ledger.record_probe("login", "#new-login", success, 10)

        result = await orchestrator.heal("login", "#old-login", [capture(button_facts)])

        assert result.stage == HealingStage.CACHED_SELECTORS
        assert 0.7 <= result.similarity < 1.0
        assert result.similarity == pytest.approx(0.888, abs=0.01)

    @pytest.mark.asyncio
    async def test_dissimilar_cached_element_rejected(self, fake_probe, button_facts):
        """Test that a cached selector now pointing elsewhere fails the gate."""
        fake_probe.elements["#new-login"] = WRONG_ELEMENT
        fake_probe.elements['[data-testid="login"]'] = button_facts
        orchestrator = _orchestrator(fake_probe)
        for _ in range(5):
            orchestrator.state.ledger.record_probe("login", "#new-login", True, 10)

        result = await orchestrator.heal("login", "#old-login", [capture(button_facts)])

        assert result.stage == HealingStage.HISTORY_BASED
        assert result.selector == '[data-testid="login"]'
        assert any(
            reason.startswith("cached_selectors: Similarity") and "below threshold" in reason
            for reason in result.reasons
        )


class TestHistoryStage:
    """Test the history based stage."""

    @pytest.mark.asyncio
    async def test_attempt_budget(self, fake_probe, button_facts):
        """Test that history attempts stop at max_attempts before adaptive runs."""
        orchestrator = _orchestrator(fake_probe)
        options = HealingOptions(max_attempts=3)

        result = await orchestrator.heal("login", "#stale", [capture(button_facts)], options)

        assert not result.found
        assert result.attempts["history_based"] == 3
        assert fake_probe.calls[4] == ("page_context", None)
        assert all(method == "wait_for" for method, _ in fake_probe.calls[:4])

    @pytest.mark.asyncio
    async def test_invalid_selector_is_skipped(self, fake_probe, button_facts):
        """Test that an unparseable candidate only fails itself."""
        fake_probe.raise_on["#login-btn"] = CandidateInvalid("#login-btn", "Unexpected token")
        fake_probe.elements['[data-testid="login"]'] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", None, [capture(button_facts)])

        assert result.stage == HealingStage.HISTORY_BASED
        assert result.selector == '[data-testid="login"]'
        assert any("Invalid selector" in reason for reason in result.reasons)

    @pytest.mark.asyncio
    async def test_history_attempts_feed_training(self, fake_probe, button_facts):
        """Test that candidate attempts are buffered as training samples."""
        fake_probe.elements['[data-testid="login"]'] = button_facts
        orchestrator = _orchestrator(fake_probe)

        await orchestrator.heal("login", None, [capture(button_facts)])

        samples = orchestrator.state.drain_training_samples()
        assert [(s.strategy, s.success) for s in samples] == [("id", False), ("data-testid", True)]

    @pytest.mark.asyncio
    async def test_descriptive_candidates_never_tried(self, fake_probe, button_facts):
        """Test that candidates no selector engine accepts are never tried."""
        reference = capture(dict(button_facts, pseudo_elements={"before": "*"}))
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", None, [reference], HealingOptions(max_attempts=20))

        assert not result.found
        assert "button:has-pseudo-element" not in fake_probe.probed


class TestAdaptiveStage:
    """Test the adaptive context stage."""

    def test_strategy_priorities(self, fake_probe):
        """Test strategy selection and ordering for a busy page."""
        orchestrator = _orchestrator(fake_probe)
        context = PageContext(
            frameworks=["react"], theme="dark", has_modals=True, has_animations=True
        )

        strategies = orchestrator.adaptive_strategies("login", context, "#old", HealingOptions())

        assert [s.name for s in strategies] == [
            "react-component",
            "modal-aware-search",
            "dark-theme-selectors",
            "animation-aware-search",
        ]
        animation = strategies[-1]
        assert animation.selectors[0] == "#old"
        assert animation.timeout_ms == 4000

    def test_no_context_no_strategies(self, fake_probe):
        """Test a plain page."""
        orchestrator = _orchestrator(fake_probe)

        assert orchestrator.adaptive_strategies("login", PageContext(), None, HealingOptions()) == []

    @pytest.mark.asyncio
    async def test_modal_aware_search(self, fake_probe, button_facts):
        """Test finding an element that moved into a dialog."""
        fake_probe.context = PageContext(has_modals=True)
        fake_probe.elements['[role="dialog"] #login'] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#stale", [capture(button_facts)])

        assert result.stage == HealingStage.ADAPTIVE_CONTEXT
        assert "adaptive strategy: modal-aware-search" in result.reasons


class TestPredictiveStage:
    """Test the predictive stage."""

    @pytest.mark.asyncio
    async def test_lower_threshold_candidates(self, fake_probe, button_facts):
        """Test that mid-confidence candidates are tried after adaptive."""
        fake_probe.elements["form > button:last-child"] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#stale", [capture(button_facts)])

        assert result.stage == HealingStage.PREDICTIVE
        assert result.attempts["history_based"] == 5

    @pytest.mark.asyncio
    async def test_disabled(self, fake_probe, button_facts):
        """Test that predictive healing can be switched off."""
        fake_probe.elements["form > button:last-child"] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal(
            "login", "#stale", [capture(button_facts)], HealingOptions(enable_predictive=False)
        )

        assert result.attempts["predictive"] == 0
        assert "predictive: disabled" in result.reasons


class TestComprehensiveStage:
    """Test the comprehensive search stage."""

    @pytest.mark.asyncio
    async def test_attribute_substring_search(self, fake_probe, button_facts):
        """Test the attribute substring search without waiting."""
        orchestrator = _orchestrator(fake_probe)
        reference = capture(button_facts)
        selector = orchestrator._search_by_attributes("login", reference)
        fake_probe.elements[selector] = button_facts

        result = await orchestrator.heal("login", "#stale", [reference])

        assert result.stage == HealingStage.COMPREHENSIVE_SEARCH
        assert ("query", selector) in fake_probe.calls
        assert '[id*="login-btn"]' in selector

    def test_text_search_uses_signature_text(self, fake_probe, button_facts):
        """Test the text search selector."""
        orchestrator = _orchestrator(fake_probe)

        assert orchestrator._search_by_text("login", capture(button_facts)) == "text=Sign in"
        assert orchestrator._search_by_text("login", capture({"tag_name": "div"})) == "text=login"


class TestCandidateTimeouts:
    """Test per-candidate time budgets."""

    @pytest.mark.asyncio
    async def test_hung_candidate_fails_alone(self, fake_probe, button_facts):
        """Test that a candidate that never resolves only fails itself."""
        fake_probe.hang_on.add("#login-btn")
        fake_probe.elements['[data-testid="login"]'] = button_facts
        orchestrator = _orchestrator(fake_probe)
        orchestrator.INSPECT_TIMEOUT_MS = 0

        result = await orchestrator.heal(
            "login", None, [capture(button_facts)], HealingOptions(selector_timeout_ms=50)
        )

        assert result.stage == HealingStage.HISTORY_BASED
        assert result.selector == '[data-testid="login"]'
        assert "history_based: '#login-btn' timed out after 50ms" in result.reasons
        assert orchestrator.state.ledger.selector_entry("#login-btn").failures == 1


class TestHealingOptions:
    """Test per-request option validation."""

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"similarity_threshold": 2.0},
        {"predictive_threshold": -0.1},
        {"selector_timeout_ms": 0},
    ])
    def test_invalid_values(self, kwargs):
        """Test that out of range options are rejected."""
        with pytest.raises(ValueError):
            HealingOptions(**kwargs)

    def test_invalid_override(self):
        """Test that overrides are validated too."""
        with pytest.raises(ValueError):
            HealingOptions.from_config(HealingConfig(), max_attempts=0)


class TestOutcomes:
    """Test run outcomes and error propagation."""

    @pytest.mark.asyncio
    async def test_not_found(self, fake_probe, button_facts):
        """Test exhausting every stage."""
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#stale", [capture(button_facts)])

        assert isinstance(result, NotFound)
        assert result.attempts["comprehensive_search"] == 2
        assert result.reasons
        record = orchestrator.state.audit.records("login")[-1]
        assert record.outcome == "not_found"
        assert orchestrator.state.ledger.element_entry("login").failures == 1

    @pytest.mark.asyncio
    async def test_match_is_audited(self, fake_probe, button_facts):
        """Test that a match lands in the audit trail and ledger."""
        fake_probe.elements["#login-btn"] = button_facts
        orchestrator = _orchestrator(fake_probe)

        await orchestrator.heal("login", "#login-btn", [capture(button_facts)])

        assert orchestrator.state.audit.stage_breakdown() == {"primary_selector": 1}
        assert orchestrator.state.ledger.top_selectors_for("login")[0][0] == "#login-btn"

    @pytest.mark.asyncio
    async def test_probe_unavailable_propagates(self, fake_probe, button_facts):
        """Test that a dead page aborts the run."""
        fake_probe.unavailable = True
        orchestrator = _orchestrator(fake_probe)

        with pytest.raises(ProbeUnavailable):
            await orchestrator.heal("login", "#login-btn", [capture(button_facts)])

    @pytest.mark.asyncio
    async def test_match_to_dict(self, fake_probe, button_facts):
        """Test the serializable view of a match."""
        fake_probe.elements["#login-btn"] = button_facts
        orchestrator = _orchestrator(fake_probe)

        result = await orchestrator.heal("login", "#login-btn", [capture(button_facts)])
        data = result.to_dict()

        assert data["found"] is True
        assert data["stage"] == "primary_selector"
        assert "handle" not in data
