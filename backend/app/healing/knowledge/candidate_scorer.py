"""
Candidate Scorer

Re-ranks selector candidates for a signature and gives a second opinion on
signature similarity. The shipped backend is a fixed feature heuristic over
an immutable, versioned weight vector; training returns a new scorer and
never touches the weights in use.

Any backend implementing CandidateScorer can replace the heuristic without
changes to callers.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Any, Optional, Tuple

from ..core.signature import ElementSignature
from ..core.selector_generator import SelectorCandidate, SelectorStrategy

# Configure logging
logger = logging.getLogger(__name__)


DEFAULT_CONFIDENCE_THRESHOLD = 0.7

# Learned per-strategy bias is kept within +/- this value
MAX_STRATEGY_BIAS = 0.1
# Weight of the newest batch when blending learned bias
BIAS_LEARNING_RATE = 0.5


@dataclass(frozen=True)
class ScoringWeights:
    """Feature weights and learned strategy bias for the heuristic scorer"""
    tag: float = 0.25
    id: float = 0.20
    class_name: float = 0.15
    text: float = 0.15
    structure: float = 0.10
    position: float = 0.08
    styles: float = 0.07
    strategy_bias: Tuple[Tuple[str, float], ...] = ()
    version: int = 1
    trained_at: Optional[str] = None
    sample_count: int = 0

    def bias_for(self, strategy: SelectorStrategy) -> float:
        for name, bias in self.strategy_bias:
            if name == strategy.value:
                return bias
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "id": self.id,
            "class_name": self.class_name,
            "text": self.text,
            "structure": self.structure,
            "position": self.position,
            "styles": self.styles,
            "strategy_bias": dict(self.strategy_bias),
            "version": self.version,
            "trained_at": self.trained_at,
            "sample_count": self.sample_count,
        }


@dataclass(frozen=True)
class TrainingSample:
    """Outcome of probing one candidate for a signature"""
    strategy: str
    selector: str
    success: bool
    features: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


def extract_features(signature: ElementSignature) -> Dict[str, Any]:
    """Flatten a signature into the features the heuristic scorer reads"""
    position = signature.position
    structure = signature.structure
    return {
        "tag_name": signature.tag_name,
        "has_id": bool(signature.attribute("id")),
        "has_class": bool(signature.attribute("class")),
        "has_data_testid": bool(signature.attribute("data-testid")),
        "has_aria_label": bool(signature.attribute("aria-label") or signature.aria.label),
        "has_text": bool(signature.text_content),
        "depth": structure.depth or 0,
        "children_count": structure.children_count or 0,
        "siblings_count": signature.siblings_count,
        "is_interactive": structure.is_interactive,
        "is_visible": structure.is_visible,
        "x": position.x if position else 0.0,
        "y": position.y if position else 0.0,
        "display": signature.computed_styles.get("display", "block"),
        "visibility": signature.computed_styles.get("visibility", "visible"),
        "opacity": signature.computed_styles.get("opacity", "1"),
        "is_form_element": signature.form is not None,
        "role": signature.aria.role,
        "has_shadow_root": bool(signature.shadow_dom and signature.shadow_dom.has_shadow_root),
    }


class CandidateScorer(ABC):
    """Interface for candidate re-ranking backends"""

    @property
    @abstractmethod
    def version(self) -> int:
        """Version of the model in use"""

    @abstractmethod
    def predict_selectors(
        self,
        signature: ElementSignature,
        candidates: List[SelectorCandidate],
        threshold: Optional[float] = None
    ) -> List[SelectorCandidate]:
        """
        Adjust candidate confidence and keep those at or above threshold.

        Must return the input list unchanged when scoring fails.
        """

    @abstractmethod
    def similarity(self, a: ElementSignature, b: ElementSignature) -> float:
        """Model opinion of how alike two signatures are, in [0, 1]"""

    @abstractmethod
    def train(self, samples: List[TrainingSample]) -> "CandidateScorer":
        """Return a new scorer fitted on samples"""

    def stats(self) -> Dict[str, Any]:
        return {"model_type": type(self).__name__, "version": self.version}


class HeuristicCandidateScorer(CandidateScorer):
    """
    Fixed-weight heuristic scorer.

    Strategy boosts are tied to signature features: an element with an id
    favours the id strategy, one with data-testid favours the test id, and
    so on. Learned per-strategy bias is layered on top.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    ):
        self.weights = weights or ScoringWeights()
        self.threshold = threshold
        self.prediction_count = 0

    @property
    def version(self) -> int:
        return self.weights.version

    def predict_selectors(
        self,
        signature: ElementSignature,
        candidates: List[SelectorCandidate],
        threshold: Optional[float] = None
    ) -> List[SelectorCandidate]:
        cutoff = self.threshold if threshold is None else threshold
        try:
            features = extract_features(signature)
            predicted = []
            for candidate in candidates:
                confidence = self._adjust(features, candidate)
                if confidence >= cutoff:
                    predicted.append(replace(
                        candidate,
                        confidence=confidence,
                        context={**candidate.context, "model_score": round(confidence, 4)},
                    ))
            predicted.sort(key=lambda c: c.confidence, reverse=True)
            self.prediction_count += 1
            return predicted
        except Exception as e:
            logger.error(f"Selector prediction failed, keeping input order: {e}")
            return candidates

    def _adjust(self, features: Dict[str, Any], candidate: SelectorCandidate) -> float:
        confidence = candidate.confidence
        strategy = candidate.strategy

        if features["has_id"] and strategy == SelectorStrategy.ID:
            confidence = min(0.98, confidence + 0.1)

        if features["has_data_testid"] and strategy == SelectorStrategy.DATA_TESTID:
            confidence = min(0.95, confidence + 0.08)

        if (features["is_form_element"] and strategy == SelectorStrategy.FORM
                and "[name=" in candidate.selector):
            confidence = min(0.90, confidence + 0.05)

        if features["has_aria_label"] and strategy == SelectorStrategy.ARIA_LABEL:
            confidence = min(0.88, confidence + 0.05)

        bias = self.weights.bias_for(strategy)
        if bias:
            confidence = max(0.1, min(0.98, confidence + bias))

        return confidence

    def similarity(self, a: ElementSignature, b: ElementSignature) -> float:
        f1 = extract_features(a)
        f2 = extract_features(b)
        w = self.weights

        score = 0.0
        total = 0.0

        score += w.tag if f1["tag_name"] == f2["tag_name"] else 0.0
        total += w.tag

        for key, weight in (("has_id", w.id), ("has_class", w.class_name), ("has_text", w.text)):
            if f1[key] and f2[key]:
                score += weight
            elif f1[key] == f2[key]:
                score += weight * 0.5
            total += weight

        score += _structural_similarity(f1, f2) * w.structure
        total += w.structure

        score += _position_similarity(f1, f2) * w.position
        total += w.position

        score += _style_similarity(f1, f2) * w.styles
        total += w.styles

        return score / total if total > 0 else 0.0

    def train(self, samples: List[TrainingSample]) -> "HeuristicCandidateScorer":
        """
        Fit per-strategy bias from probe outcomes.

        Args:
            samples: Outcomes collected since the last training

        Returns:
            New scorer with the next weights version
        """
        if not samples:
            return self

        outcomes: Dict[str, List[bool]] = defaultdict(list)
        for sample in samples:
            outcomes[sample.strategy].append(sample.success)

        bias = dict(self.weights.strategy_bias)
        for strategy, results in outcomes.items():
            rate = sum(results) / len(results)
            batch_bias = (rate - 0.5) * 2 * MAX_STRATEGY_BIAS
            previous = bias.get(strategy, 0.0)
            blended = previous + (batch_bias - previous) * BIAS_LEARNING_RATE
            bias[strategy] = max(-MAX_STRATEGY_BIAS, min(MAX_STRATEGY_BIAS, blended))

        weights = replace(
            self.weights,
            strategy_bias=tuple(sorted(bias.items())),
            version=self.weights.version + 1,
            trained_at=datetime.utcnow().isoformat(),
            sample_count=self.weights.sample_count + len(samples),
        )
        logger.info(f"Trained scorer v{weights.version} on {len(samples)} samples")
        return HeuristicCandidateScorer(weights, self.threshold)

    def stats(self) -> Dict[str, Any]:
        stats = super().stats()
        stats.update({
            "predictions": self.prediction_count,
            "weights": self.weights.to_dict(),
        })
        return stats


def _structural_similarity(f1: Dict[str, Any], f2: Dict[str, Any]) -> float:
    depth = max(0.0, 1 - abs(f1["depth"] - f2["depth"]) / 10)
    children = max(0.0, 1 - abs(f1["children_count"] - f2["children_count"]) / 5)
    interactive = 1.0 if f1["is_interactive"] == f2["is_interactive"] else 0.0
    return (depth + children + interactive) / 3


def _position_similarity(f1: Dict[str, Any], f2: Dict[str, Any]) -> float:
    x = max(0.0, 1 - abs(f1["x"] - f2["x"]) / 100)
    y = max(0.0, 1 - abs(f1["y"] - f2["y"]) / 100)
    return (x + y) / 2


def _style_similarity(f1: Dict[str, Any], f2: Dict[str, Any]) -> float:
    keys = ("display", "visibility", "opacity")
    return sum(1 for k in keys if f1[k] == f2[k]) / len(keys)
