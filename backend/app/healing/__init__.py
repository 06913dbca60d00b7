"""
Self-Healing Element Locator

Finds UI elements again after the page changed under them:
- Captures a signature of each registered element
- Generates ranked selector candidates across many strategies
- Recovers broken selectors through a staged healing pipeline
- Learns which selectors work from every probe
- Runs named location scenarios with timeouts and retries
"""

from .config import HealingConfig
from .core import (
    HealingError,
    ProbeUnavailable,
    CandidateInvalid,
    SimilarityBelowThreshold,
    HealingTimeout,
    ElementNotRegistered,
    SelectorNotMatched,
    Probe,
    PageContext,
    ElementSignature,
    capture,
    similarity,
    detect_changes,
    SelectorGenerator,
    SelectorCandidate,
    SelectorStrategy,
)
from .knowledge import PerformanceLedger, HealingAuditTrail, CandidateScorer, HeuristicCandidateScorer
from .core.state import HealingState
from .core.orchestrator import HealingOrchestrator, HealingOptions, HealingMatch, NotFound, HealingStage
from .core.service import ElementHealingService
from .scenarios import ScenarioExecutor, ScenarioType, ScenarioConfig, ScenarioResult, default_scenario_executor
from .adapters import PlaywrightProbe, PlaywrightSession

__version__ = "1.0.0"

__all__ = [
    # Config
    "HealingConfig",
    # Errors
    "HealingError",
    "ProbeUnavailable",
    "CandidateInvalid",
    "SimilarityBelowThreshold",
    "HealingTimeout",
    "ElementNotRegistered",
    "SelectorNotMatched",
    # Core
    "Probe",
    "PageContext",
    "ElementSignature",
    "capture",
    "similarity",
    "detect_changes",
    "SelectorGenerator",
    "SelectorCandidate",
    "SelectorStrategy",
    "HealingState",
    "HealingOrchestrator",
    "HealingOptions",
    "HealingMatch",
    "NotFound",
    "HealingStage",
    "ElementHealingService",
    # Knowledge
    "PerformanceLedger",
    "HealingAuditTrail",
    "CandidateScorer",
    "HeuristicCandidateScorer",
    # Scenarios
    "ScenarioExecutor",
    "ScenarioType",
    "ScenarioConfig",
    "ScenarioResult",
    "default_scenario_executor",
    # Adapters
    "PlaywrightProbe",
    "PlaywrightSession",
]
