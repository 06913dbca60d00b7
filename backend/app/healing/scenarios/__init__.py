"""
Scenario Module

Named location scenarios with per-scenario timeouts and retries.
"""

from .executor import (
    ScenarioType,
    ScenarioConfig,
    ScenarioResult,
    MultiScenarioResult,
    Scenario,
    ScenarioExecutor,
)
from .handlers import HealingScenario, DynamicContentScenario, ModalDialogScenario, default_scenario_executor

__all__ = [
    "ScenarioType",
    "ScenarioConfig",
    "ScenarioResult",
    "MultiScenarioResult",
    "Scenario",
    "ScenarioExecutor",
    "HealingScenario",
    "DynamicContentScenario",
    "ModalDialogScenario",
    "default_scenario_executor",
]
