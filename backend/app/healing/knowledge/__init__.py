"""
Knowledge Module

Selector performance tracking, alerts and candidate scoring.
"""

from .performance_ledger import (
    PerformanceLedger,
    LedgerEntry,
    HealingAuditTrail,
    HealingAttemptRecord,
    AlertThresholds,
    PerformanceAlert,
    evaluate_alerts,
)
from .candidate_scorer import CandidateScorer, HeuristicCandidateScorer, ScoringWeights, TrainingSample

__all__ = [
    "PerformanceLedger",
    "LedgerEntry",
    "HealingAuditTrail",
    "HealingAttemptRecord",
    "AlertThresholds",
    "PerformanceAlert",
    "evaluate_alerts",
    "CandidateScorer",
    "HeuristicCandidateScorer",
    "ScoringWeights",
    "TrainingSample",
]
