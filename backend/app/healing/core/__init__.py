"""
Core Healing Module

Element signatures, selector generation and the probe interface the
healing engine uses to talk to a browser.
"""

from .exceptions import (
    HealingError,
    ProbeUnavailable,
    CandidateInvalid,
    SimilarityBelowThreshold,
    HealingTimeout,
    ElementNotRegistered,
    SelectorNotMatched,
)
from .probe import Probe, PageContext
from .signature import ElementSignature, capture, similarity, detect_changes
from .selector_generator import SelectorGenerator, SelectorCandidate, SelectorStrategy

__all__ = [
    "HealingError",
    "ProbeUnavailable",
    "CandidateInvalid",
    "SimilarityBelowThreshold",
    "HealingTimeout",
    "ElementNotRegistered",
    "SelectorNotMatched",
    "Probe",
    "PageContext",
    "ElementSignature",
    "capture",
    "similarity",
    "detect_changes",
    "SelectorGenerator",
    "SelectorCandidate",
    "SelectorStrategy",
]
