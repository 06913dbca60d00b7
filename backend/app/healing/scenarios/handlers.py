"""
Built-in scenarios.

Each scenario talks to the browser only through a Probe. The page
argument passed by the executor is ignored here; it is available to
scenarios that need direct page access.
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from ..core.probe import Probe
from ..core.signature import capture
from ..core.selector_generator import css_quote
from ..core.orchestrator import HealingOptions
from .executor import Scenario, ScenarioType, ScenarioExecutor

# Configure logging
logger = logging.getLogger(__name__)


def _fallback_selector(element_id: str) -> str:
    return f"[data-testid={css_quote(element_id)}]"


class HealingScenario(Scenario):
    """Finds the element through the self-healing service"""

    scenario_type = ScenarioType.HEALING

    def __init__(self, service):
        self.service = service

    async def execute(self, page, element_id: str, selector: Optional[str], options: Dict[str, Any]) -> Dict[str, Any]:
        healing_options = None
        overrides = {
            key: options[key]
            for key in ("max_attempts", "similarity_threshold", "selector_timeout_ms")
            if options.get(key) is not None
        }
        if overrides:
            healing_options = HealingOptions.from_config(self.service.config, **overrides)

        result = await self.service.find_element_with_healing(element_id, selector, healing_options)
        if not result.found:
            return {
                "element_found": False,
                "selector": None,
                "confidence": 0.0,
                "metadata": {"attempts": result.attempts, "reasons": result.reasons},
            }

        return {
            "element_found": True,
            "selector": result.selector,
            "confidence": result.similarity if result.similarity is not None else 1.0,
            "metadata": {"stage": result.stage.value, "attempts": result.attempts},
        }


class DynamicContentScenario(Scenario):
    """
    Waits for content that renders late, then checks it stopped moving.

    An element whose position is unchanged across two inspections is
    reported with higher confidence than one still settling.
    """

    scenario_type = ScenarioType.DYNAMIC_CONTENT

    STABLE_CONFIDENCE = 0.9
    UNSTABLE_CONFIDENCE = 0.6

    def __init__(self, probe: Probe):
        self.probe = probe

    async def execute(self, page, element_id: str, selector: Optional[str], options: Dict[str, Any]) -> Dict[str, Any]:
        target = selector or _fallback_selector(element_id)
        timeout_ms = int(options.get("stability_timeout_ms", 2000))
        interval_ms = int(options.get("stability_interval_ms", 100))

        handle = await self.probe.wait_for(target, timeout_ms)
        if handle is None:
            return {"element_found": False, "selector": None, "confidence": 0.0, "metadata": {}}

        if not options.get("wait_for_stability", True):
            return {"element_found": True, "selector": target, "confidence": self.UNSTABLE_CONFIDENCE,
                    "metadata": {"stable": None}}

        first = capture(await self.probe.inspect(handle))
        await asyncio.sleep(interval_ms / 1000)
        second = capture(await self.probe.inspect(handle))

        stable = first.position == second.position
        logger.debug(f"Dynamic content {target!r} stable={stable}")
        return {
            "element_found": True,
            "selector": target,
            "confidence": self.STABLE_CONFIDENCE if stable else self.UNSTABLE_CONFIDENCE,
            "metadata": {"stable": stable},
        }


class ModalDialogScenario(Scenario):
    """Looks for the element inside open dialogs"""

    scenario_type = ScenarioType.MODAL_DIALOG

    DIALOG_CONTAINERS = ('[role="dialog"]', '[role="alertdialog"]', "dialog[open]", ".modal")
    CONFIDENCE = 0.85

    def __init__(self, probe: Probe):
        self.probe = probe

    async def execute(self, page, element_id: str, selector: Optional[str], options: Dict[str, Any]) -> Dict[str, Any]:
        target = selector or _fallback_selector(element_id)

        for container in self.DIALOG_CONTAINERS:
            scoped = f"{container} {target}"
            handle = await self.probe.query(scoped)
            if handle is not None:
                return {
                    "element_found": True,
                    "selector": scoped,
                    "confidence": self.CONFIDENCE,
                    "metadata": {"container": container},
                }

        return {"element_found": False, "selector": None, "confidence": 0.0, "metadata": {}}


def default_scenario_executor(service) -> ScenarioExecutor:
    """Executor with the built-in scenarios wired to a healing service"""
    executor = ScenarioExecutor()
    executor.register(HealingScenario(service))
    executor.register(DynamicContentScenario(service.probe))
    executor.register(ModalDialogScenario(service.probe))
    return executor
