"""
Scenario Executor

Runs named recovery scenarios (modal dialogs, dynamic content, healing,
...) with per-attempt timeouts, linear retry backoff and normalized
results. Several scenarios can be raced against each other; the best
result wins by confidence, then speed.
"""

import re
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional, Union

from ..core.exceptions import ProbeUnavailable, HealingTimeout
from ..core.signature import ElementSignature

# Configure logging
logger = logging.getLogger(__name__)


class ScenarioType(Enum):
    """Known scenario kinds"""
    HEALING = "healing"
    DYNAMIC_CONTENT = "dynamic-content"
    SHADOW_DOM = "shadow-dom"
    IFRAME = "iframe"
    RESPONSIVE = "responsive"
    LAZY_LOAD = "lazy-load"
    FORM_VALIDATION = "form-validation"
    LOCALIZATION = "localization"
    THEME = "theme"
    FEATURE_FLAG = "feature-flag"
    PWA = "pwa"
    ANIMATION = "animation"
    VIRTUAL_SCROLL = "virtual-scroll"
    INFINITE_SCROLL = "infinite-scroll"
    MODAL_DIALOG = "modal-dialog"
    TOOLTIP = "tooltip"


ScenarioName = Union[ScenarioType, str]


@dataclass
class ScenarioConfig:
    """How a scenario is run"""
    enabled: bool = True
    priority: int = 1
    timeout_ms: int = 30000
    retry_attempts: int = 3
    custom_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.retry_attempts < 1:
            raise ValueError(f"retry_attempts must be >= 1, got {self.retry_attempts}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "priority": self.priority,
            "timeout_ms": self.timeout_ms,
            "retry_attempts": self.retry_attempts,
            "custom_options": dict(self.custom_options),
        }


# Default priorities and options per scenario kind
DEFAULT_SCENARIO_CONFIGS: Dict[str, Dict[str, Any]] = {
    ScenarioType.HEALING.value: {"priority": 6},
    ScenarioType.DYNAMIC_CONTENT.value: {
        "priority": 5,
        "custom_options": {"wait_for_stability": True, "stability_timeout_ms": 2000},
    },
    ScenarioType.SHADOW_DOM.value: {"priority": 4, "custom_options": {"deep_traversal": True, "max_depth": 5}},
    ScenarioType.IFRAME.value: {"priority": 3, "custom_options": {"wait_for_load": True}},
    ScenarioType.RESPONSIVE.value: {"priority": 2, "custom_options": {"breakpoints": [320, 768, 1024, 1440]}},
    ScenarioType.LAZY_LOAD.value: {"priority": 4, "custom_options": {"scroll_trigger": True}},
    ScenarioType.FORM_VALIDATION.value: {"priority": 3, "custom_options": {"trigger_validation": True}},
    ScenarioType.ANIMATION.value: {"priority": 2, "custom_options": {"max_animation_time_ms": 5000}},
    ScenarioType.MODAL_DIALOG.value: {"priority": 4, "custom_options": {"handle_overlay": True}},
    ScenarioType.TOOLTIP.value: {"priority": 1, "custom_options": {"hover_trigger": True}},
}


@dataclass
class ScenarioResult:
    """Normalized outcome of one scenario execution"""
    scenario_type: str
    success: bool
    element_found: bool = False
    selector: Optional[str] = None
    confidence: float = 0.0
    execution_time_ms: float = 0.0
    attempts: int = 1
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_type": self.scenario_type,
            "success": self.success,
            "element_found": self.element_found,
            "selector": self.selector,
            "confidence": self.confidence,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "attempts": self.attempts,
            "error": self.error,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }


@dataclass
class MultiScenarioResult:
    """Outcome of racing several scenarios"""
    best_result: Optional[ScenarioResult]
    all_results: List[ScenarioResult]
    success_count: int
    total_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_result": self.best_result.to_dict() if self.best_result else None,
            "all_results": [r.to_dict() for r in self.all_results],
            "success_count": self.success_count,
            "total_count": self.total_count,
        }


class Scenario(ABC):
    """
    A recovery procedure.

    execute() returns a dict with element_found, confidence, selector and
    metadata. Raising marks the attempt as failed; the executor retries.
    """

    scenario_type: ScenarioType

    @abstractmethod
    async def execute(
        self,
        page: Any,
        element_id: str,
        selector: Optional[str],
        options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Run one attempt of the scenario"""


class ScenarioExecutor:
    """
    Registry and runner for scenarios.

    Usage:
        executor = ScenarioExecutor()
        executor.register(ModalDialogScenario(probe))
        result = await executor.execute("modal-dialog", page, "login-btn", "#login")
    """

    # Executions kept for metrics
    HISTORY_LIMIT = 1000

    # Delay before retry N is N * RETRY_BACKOFF_MS
    RETRY_BACKOFF_MS = 1000

    MAX_RECOMMENDATIONS = 5

    def __init__(self):
        self._scenarios: Dict[str, Scenario] = {}
        self._configs: Dict[str, ScenarioConfig] = {}
        self._history: deque = deque(maxlen=self.HISTORY_LIMIT)

    @staticmethod
    def _key(name: ScenarioName) -> str:
        return name.value if isinstance(name, ScenarioType) else str(name)

    # ==================== Registry ====================

    def register(self, scenario: Scenario, config: Optional[ScenarioConfig] = None):
        """Register a scenario under its type, with default config unless given"""
        key = self._key(scenario.scenario_type)
        self._scenarios[key] = scenario
        if config is None:
            defaults = DEFAULT_SCENARIO_CONFIGS.get(key, {})
            config = ScenarioConfig(**{
                **defaults,
                "custom_options": dict(defaults.get("custom_options", {})),
            })
        self._configs[key] = config
        logger.debug(f"Registered scenario: {key}")

    def configure_scenario(self, name: ScenarioName, config: ScenarioConfig):
        key = self._key(name)
        if key not in self._scenarios:
            raise ValueError(f"Unknown scenario type: {key}")
        self._configs[key] = config
        logger.info(f"Configured scenario: {key}")

    def set_scenario_enabled(self, name: ScenarioName, enabled: bool):
        key = self._key(name)
        config = self._configs.get(key)
        if config is None:
            raise ValueError(f"Unknown scenario type: {key}")
        config.enabled = enabled
        logger.info(f"Scenario {key} {'enabled' if enabled else 'disabled'}")

    def get_config(self, name: ScenarioName) -> Optional[ScenarioConfig]:
        return self._configs.get(self._key(name))

    def list_scenarios(self) -> List[Dict[str, Any]]:
        rows = [
            {"scenario_type": key, **self._configs[key].to_dict()}
            for key in self._scenarios
        ]
        rows.sort(key=lambda r: r["priority"], reverse=True)
        return rows

    # ==================== Execution ====================

    async def _delay(self, ms: int):
        await asyncio.sleep(ms / 1000)

    async def execute(
        self,
        name: ScenarioName,
        page: Any,
        element_id: str,
        selector: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> ScenarioResult:
        """
        Run a scenario with timeout and retries.

        Args:
            name: Scenario type
            page: Page (or probe) handed to the scenario
            element_id: Element the scenario should find
            selector: Selector hint
            options: Overrides; timeout_ms and retry_attempts are honoured

        Returns:
            ScenarioResult (never raises except ProbeUnavailable)
        """
        key = self._key(name)
        options = dict(options or {})
        started = time.monotonic()

        scenario = self._scenarios.get(key)
        if scenario is None:
            result = ScenarioResult(key, False, attempts=0, error=f"Unknown scenario type: {key}")
            self._record(result)
            logger.error(f"Unknown scenario type: {key}")
            return result

        config = self._configs[key]
        if not config.enabled:
            return ScenarioResult(key, False, attempts=0, error="Scenario is disabled")

        timeout_ms = options.pop("timeout_ms", None) or config.timeout_ms
        max_attempts = options.pop("retry_attempts", None) or config.retry_attempts
        execution_options = {**config.custom_options, **options}

        logger.info(f"Executing scenario: {key} for element: {element_id}")

        last_error = None
        for attempt in range(1, max_attempts + 1):
            try:
                outcome = await self._run_attempt(scenario, page, element_id, selector, execution_options, timeout_ms)
                outcome = outcome or {}
                confidence = outcome.get("confidence")
                result = ScenarioResult(
                    scenario_type=key,
                    success=True,
                    element_found=bool(outcome.get("element_found")),
                    selector=outcome.get("selector"),
                    confidence=float(confidence) if confidence is not None else 1.0,
                    execution_time_ms=(time.monotonic() - started) * 1000,
                    attempts=attempt,
                    metadata=outcome.get("metadata") or {},
                )
                self._record(result)
                logger.info(f"Scenario executed: {key} ({result.execution_time_ms:.0f}ms)")
                return result
            except ProbeUnavailable:
                raise
            except HealingTimeout as e:
                last_error = f"Scenario execution timeout after {e.timeout_ms}ms"
                logger.warning(f"Scenario attempt {attempt} timed out: {key}")
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"Scenario attempt {attempt} failed: {key} - {last_error}")

            if attempt < max_attempts:
                await self._delay(self.RETRY_BACKOFF_MS * attempt)

        result = ScenarioResult(
            scenario_type=key,
            success=False,
            execution_time_ms=(time.monotonic() - started) * 1000,
            attempts=max_attempts,
            error=last_error or "Unknown error",
        )
        self._record(result)
        logger.error(f"Scenario failed after {max_attempts} attempts: {key}")
        return result

    async def _run_attempt(
        self,
        scenario: Scenario,
        page: Any,
        element_id: str,
        selector: Optional[str],
        options: Dict[str, Any],
        timeout_ms: int
    ) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(
                scenario.execute(page, element_id, selector, options),
                timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            raise HealingTimeout(f"Scenario {self._key(scenario.scenario_type)}", timeout_ms) from None

    async def execute_multiple(
        self,
        names: List[ScenarioName],
        page: Any,
        element_id: str,
        selector: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> MultiScenarioResult:
        """
        Run scenarios concurrently and pick the best successful result.

        All scenarios are allowed to settle. The best result is the one
        with the highest confidence, ties broken by execution time.

        Raises:
            ProbeUnavailable: After all scenarios settled, if any hit a dead page
        """
        keys = [self._key(name) for name in names]
        logger.info(f"Executing {len(keys)} scenarios for element: {element_id}")

        outcomes = await asyncio.gather(
            *(self.execute(key, page, element_id, selector, options) for key in keys),
            return_exceptions=True
        )

        results: List[ScenarioResult] = []
        unavailable = None
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, ScenarioResult):
                results.append(outcome)
                continue
            if isinstance(outcome, ProbeUnavailable) and unavailable is None:
                unavailable = outcome
            results.append(ScenarioResult(key, False, error=str(outcome) or type(outcome).__name__))

        if unavailable is not None:
            raise unavailable

        successful = [r for r in results if r.success and r.element_found]
        best = min(successful, key=lambda r: (-r.confidence, r.execution_time_ms)) if successful else None

        if best:
            logger.info(f"Best scenario result: {best.scenario_type}")
        else:
            logger.warning(f"No successful scenarios for element: {element_id}")

        return MultiScenarioResult(
            best_result=best,
            all_results=results,
            success_count=len(successful),
            total_count=len(keys),
        )

    # ==================== Recommendations ====================

    def get_recommended_scenarios(self, signature: ElementSignature) -> List[Dict[str, Any]]:
        """
        Suggest scenarios from the traits of an element.

        Returns:
            Up to five dicts with scenario_type, confidence, reason and
            whether the scenario is registered
        """
        attributes = signature.attributes or {}
        styles = signature.computed_styles
        tag = signature.tag_name
        classes = attributes.get("class", "")
        recommendations = []

        def recommend(scenario_type: ScenarioType, confidence: float, reason: str):
            recommendations.append({
                "scenario_type": scenario_type.value,
                "confidence": confidence,
                "reason": reason,
                "registered": scenario_type.value in self._scenarios,
            })

        if any(k.startswith("data-") for k in attributes) or any(
            marker in k for k in attributes for marker in ("loading", "async", "defer", "lazy")
        ):
            recommend(ScenarioType.DYNAMIC_CONTENT, 0.8, "Element has dynamic content indicators")

        if (re.match(r"^[a-z]+-[a-z-]+$", tag) or "is" in attributes
                or (signature.shadow_dom is not None and signature.shadow_dom.has_shadow_root)):
            recommend(ScenarioType.SHADOW_DOM, 0.9, "Element likely uses Shadow DOM")

        if tag in ("input", "select", "textarea", "button", "form") or any(
            attr in attributes for attr in ("required", "pattern", "min", "max", "minlength", "maxlength")
        ):
            recommend(ScenarioType.FORM_VALIDATION, 0.85, "Element is a form control with validation")

        if (styles.get("animationName") not in (None, "none")
                or styles.get("transitionDuration") not in (None, "0s")):
            recommend(ScenarioType.ANIMATION, 0.7, "Element has animation or transition styles")

        role = attributes.get("role") or signature.aria.role
        if role in ("dialog", "alertdialog") or tag == "dialog" or (
            styles.get("position") == "fixed" and _as_int(styles.get("zIndex")) > 1000
        ):
            recommend(ScenarioType.MODAL_DIALOG, 0.9, "Element appears to be a modal dialog")

        if (tag == "img" and attributes.get("loading") == "lazy") or "data-src" in attributes or "lazy" in classes:
            recommend(ScenarioType.LAZY_LOAD, 0.8, "Element has lazy loading indicators")

        if ("responsive" in classes or "col-" in classes
                or styles.get("display") in ("flex", "grid")):
            recommend(ScenarioType.RESPONSIVE, 0.6, "Element has responsive design indicators")

        recommendations.sort(key=lambda r: r["confidence"], reverse=True)
        return recommendations[:self.MAX_RECOMMENDATIONS]

    # ==================== Metrics ====================

    def _record(self, result: ScenarioResult):
        self._history.append(result)

    @property
    def history(self) -> List[ScenarioResult]:
        return list(self._history)

    def get_performance_metrics(self) -> Dict[str, Any]:
        history = list(self._history)
        metrics = {
            "total_executions": len(history),
            "success_rate": 0.0,
            "average_execution_time_ms": 0.0,
            "scenario_breakdown": {},
            "recent_executions": [r.to_dict() for r in history[-10:]],
        }
        if not history:
            return metrics

        metrics["success_rate"] = sum(1 for r in history if r.success) / len(history)
        metrics["average_execution_time_ms"] = sum(r.execution_time_ms for r in history) / len(history)

        grouped: Dict[str, List[ScenarioResult]] = defaultdict(list)
        for result in history:
            grouped[result.scenario_type].append(result)

        for scenario_type, results in grouped.items():
            metrics["scenario_breakdown"][scenario_type] = {
                "executions": len(results),
                "success_rate": sum(1 for r in results if r.success) / len(results),
                "average_time_ms": sum(r.execution_time_ms for r in results) / len(results),
            }
        return metrics


def _as_int(value: Optional[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
