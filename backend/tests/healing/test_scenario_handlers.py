"""
Unit tests for the built-in scenarios.
"""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from healing.core.probe import PageContext
from healing.core.service import ElementHealingService
from healing.scenarios.handlers import (
    HealingScenario,
    DynamicContentScenario,
    ModalDialogScenario,
    default_scenario_executor,
)


class TestHealingScenario:
    """Test the healing-backed scenario."""

    @pytest.mark.asyncio
    async def test_found(self, fake_probe, button_facts):
        """Test reporting a healed element."""
        fake_probe.elements["#login-btn"] = button_facts
        service = ElementHealingService(fake_probe)
        await service.register_by_selector("login", "#login-btn")

        outcome = await HealingScenario(service).execute(None, "login", None, {})

        assert outcome["element_found"] is True
        assert outcome["selector"] == "#login-btn"
        assert outcome["confidence"] == pytest.approx(1.0)
        assert outcome["metadata"]["stage"] == "primary_selector"

    @pytest.mark.asyncio
    async def test_passes_overrides(self, fake_probe, button_facts):
        """Test that healing options are taken from the scenario options."""
        fake_probe.elements["#login-btn"] = button_facts
        service = ElementHealingService(fake_probe)
        await service.register_by_selector("login", "#login-btn")
        fake_probe.elements = {}

        outcome = await HealingScenario(service).execute(None, "login", None, {"max_attempts": 1})

        assert outcome["element_found"] is False
        assert outcome["metadata"]["attempts"]["history_based"] == 1


class TestDynamicContentScenario:
    """Test waiting for late content."""

    @pytest.mark.asyncio
    async def test_stable_element(self, fake_probe, button_facts):
        """Test high confidence for an element that stopped moving."""
        fake_probe.elements["#feed"] = button_facts
        scenario = DynamicContentScenario(fake_probe)

        outcome = await scenario.execute(None, "feed", "#feed", {"stability_interval_ms": 1})

        assert outcome["element_found"] is True
        assert outcome["confidence"] == pytest.approx(DynamicContentScenario.STABLE_CONFIDENCE)
        assert outcome["metadata"]["stable"] is True

    @pytest.mark.asyncio
    async def test_moving_element(self, fake_probe, make_facts):
        """Test lower confidence while the element is still moving."""
        fake_probe.elements["#feed"] = make_facts()
        fake_probe.inspect = AsyncMock(side_effect=[
            make_facts(position={"x": 0, "y": 0, "width": 10, "height": 10}),
            make_facts(position={"x": 0, "y": 40, "width": 10, "height": 10}),
        ])
        scenario = DynamicContentScenario(fake_probe)

        outcome = await scenario.execute(None, "feed", "#feed", {"stability_interval_ms": 1})

        assert outcome["confidence"] == pytest.approx(DynamicContentScenario.UNSTABLE_CONFIDENCE)
        assert outcome["metadata"]["stable"] is False

    @pytest.mark.asyncio
    async def test_missing(self, fake_probe):
        """Test the fallback test id selector when nothing matches."""
        outcome = await DynamicContentScenario(fake_probe).execute(None, "feed", None, {})

        assert outcome["element_found"] is False
        assert fake_probe.probed == ['[data-testid="feed"]']


class TestModalDialogScenario:
    """Test searching inside dialogs."""

    @pytest.mark.asyncio
    async def test_scoped_to_dialog(self, fake_probe, button_facts):
        """Test that the element is looked up inside dialog containers."""
        fake_probe.elements['dialog[open] #confirm'] = button_facts

        outcome = await ModalDialogScenario(fake_probe).execute(None, "confirm", "#confirm", {})

        assert outcome["element_found"] is True
        assert outcome["selector"] == "dialog[open] #confirm"
        assert outcome["metadata"]["container"] == "dialog[open]"
        assert fake_probe.probed == [
            '[role="dialog"] #confirm',
            '[role="alertdialog"] #confirm',
            "dialog[open] #confirm",
        ]

    @pytest.mark.asyncio
    async def test_not_in_dialog(self, fake_probe):
        """Test reporting no match."""
        outcome = await ModalDialogScenario(fake_probe).execute(None, "confirm", "#confirm", {})

        assert outcome["element_found"] is False


class TestDefaultExecutor:
    """Test the executor wiring."""

    @pytest.mark.asyncio
    async def test_registered_scenarios(self, fake_probe, button_facts):
        """Test that the built-in scenarios are registered and runnable."""
        fake_probe.elements['[role="dialog"] #confirm'] = button_facts
        executor = default_scenario_executor(ElementHealingService(fake_probe))

        names = {row["scenario_type"] for row in executor.list_scenarios()}
        result = await executor.execute("modal-dialog", None, "confirm", "#confirm")

        assert names == {"healing", "dynamic-content", "modal-dialog"}
        assert result.success and result.element_found
        assert result.confidence == pytest.approx(0.85)
