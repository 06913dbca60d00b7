"""
Selector Generator

Turns an element signature into ranked selector candidates, one per
applicable strategy. Strategies without supporting data emit nothing.

Candidates are ordered by overall score:
    0.4 * confidence + 0.3 * specificity / 100 + 0.3 * stability

Historical performance can then re-rank candidates through
optimize_selectors().
"""

import re
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Any, Optional, Mapping

from .signature import ElementSignature

# Configure logging
logger = logging.getLogger(__name__)


class SelectorStrategy(Enum):
    """Ways of addressing an element"""
    ID = "id"
    DATA_TESTID = "data-testid"
    ARIA_LABEL = "aria-label"
    ROLE = "role"
    CLASS = "class"
    TEXT = "text"
    STRUCTURAL = "structural"
    STATE_BASED = "state-based"
    ARIA_RELATIONSHIP = "aria-relationship"
    FORM = "form"
    PSEUDO_ELEMENT = "pseudo-element"
    XPATH = "xpath"
    CSS = "css"


@dataclass
class SelectorCandidate:
    """A selector with its ranking inputs"""
    strategy: SelectorStrategy
    selector: str
    confidence: float
    specificity: int
    stability: float = 1.0
    performance: Optional[Dict[str, Any]] = None
    context: Dict[str, Any] = field(default_factory=dict)
    # False for descriptive candidates no selector engine can evaluate
    probeable: bool = True

    @property
    def overall_score(self) -> float:
        return (
            self.confidence * 0.4 +
            self.specificity / 100 * 0.3 +
            self.stability * 0.3
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "selector": self.selector,
            "confidence": round(self.confidence, 4),
            "specificity": self.specificity,
            "stability": round(self.stability, 4),
            "overall_score": round(self.overall_score, 4),
            "performance": self.performance,
            "context": self.context,
            "probeable": self.probeable,
        }


@dataclass(frozen=True)
class OptimizationTuning:
    """Constants for history-driven re-ranking"""
    boost_success_rate: float = 0.8
    boost_max_latency_ms: float = 100.0
    boost_amount: float = 0.1
    penalty_success_rate: float = 0.5
    penalty_min_latency_ms: float = 1000.0
    penalty_amount: float = 0.2
    min_confidence: float = 0.1
    max_confidence: float = 0.98


DEFAULT_TUNING = OptimizationTuning()

_CSS_IDENTIFIER = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_-]*$")

TEXT_MIN_LENGTH = 3
TEXT_MAX_LENGTH = 100
PARTIAL_TEXT_LENGTH = 30
XPATH_TEXT_MAX_LENGTH = 50


def css_quote(value: str) -> str:
    """Quote a value for use inside a CSS attribute selector"""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def xpath_quote(value: str) -> str:
    """Quote a value as an XPath string literal"""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{p}'" for p in parts) + ")"


def is_css_identifier(value: str) -> bool:
    return bool(_CSS_IDENTIFIER.match(value))


class SelectorGenerator:
    """
    Multi-strategy selector generator.

    Usage:
        generator = SelectorGenerator()
        candidates = generator.generate(signature)
        candidates = generator.optimize_selectors(candidates, ledger.performance_data())
    """

    def __init__(self, tuning: Optional[OptimizationTuning] = None):
        self.tuning = tuning or DEFAULT_TUNING

    def generate(self, signature: ElementSignature) -> List[SelectorCandidate]:
        """
        Generate candidates for every applicable strategy.

        Args:
            signature: Element signature to address

        Returns:
            Candidates sorted by overall score, best first
        """
        candidates: List[SelectorCandidate] = []

        candidates.extend(self._attribute_selectors(signature))
        candidates.extend(self._class_selectors(signature))
        candidates.extend(self._text_selectors(signature))
        candidates.extend(self._structural_selectors(signature))
        candidates.extend(self._state_selectors(signature))
        candidates.extend(self._aria_relationship_selectors(signature))
        candidates.extend(self._form_selectors(signature))
        candidates.extend(self._pseudo_element_selectors(signature))
        candidates.extend(self._xpath_selectors(signature))

        candidates = _dedupe(candidates)
        candidates.sort(key=lambda c: c.overall_score, reverse=True)

        logger.debug(f"Generated {len(candidates)} selector candidates for <{signature.tag_name}>")
        return candidates

    # ==================== Strategies ====================

    def _attribute_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        candidates = []
        tag = signature.tag_name

        element_id = signature.attribute("id")
        if element_id:
            selector = f"#{element_id}" if is_css_identifier(element_id) else f"[id={css_quote(element_id)}]"
            candidates.append(SelectorCandidate(
                SelectorStrategy.ID, selector, 0.95, 100,
                context={"attribute_based": True}
            ))

        test_id = signature.attribute("data-testid")
        if test_id:
            candidates.append(SelectorCandidate(
                SelectorStrategy.DATA_TESTID, f"[data-testid={css_quote(test_id)}]", 0.92, 95,
                context={"testing_optimized": True}
            ))

        aria_label = signature.attribute("aria-label") or signature.aria.label
        if aria_label:
            candidates.append(SelectorCandidate(
                SelectorStrategy.ARIA_LABEL, f"[aria-label={css_quote(aria_label)}]", 0.88, 85,
                context={"accessibility_based": True}
            ))

        role = signature.aria.role or signature.attribute("role")
        if role:
            candidates.append(SelectorCandidate(
                SelectorStrategy.ROLE, f"[role={css_quote(role)}]", 0.80, 70,
                context={"semantic_based": True, "tag": tag}
            ))

        return candidates

    def _class_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        classes = [c for c in signature.classes if is_css_identifier(c)]
        if not classes:
            return []

        tag = signature.tag_name
        candidates = []

        if len(classes) == 1:
            candidates.append(SelectorCandidate(
                SelectorStrategy.CLASS, f"{tag}.{classes[0]}", 0.75, 60,
                context={"single_class": True}
            ))
        else:
            combined = ".".join(classes[:3])
            candidates.append(SelectorCandidate(
                SelectorStrategy.CLASS, f"{tag}.{combined}", 0.80, 70,
                context={"multiple_classes": True, "class_count": len(classes)}
            ))

        # Longest class is treated as the most specific one
        specific = max(classes, key=len)
        if specific != classes[0]:
            candidates.append(SelectorCandidate(
                SelectorStrategy.CLASS, f"{tag}.{specific}", 0.70, 65,
                context={"specific_class": True}
            ))

        return candidates

    def _text_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        if signature.text_content is None:
            return []

        text = " ".join(signature.text_content.split())
        if len(text) < TEXT_MIN_LENGTH or len(text) > TEXT_MAX_LENGTH:
            return []

        quoted = text.replace('"', '\\"')
        candidates = [
            SelectorCandidate(
                SelectorStrategy.TEXT, f'text="{quoted}"', 0.65, 40,
                context={"exact_text": True, "text_length": len(text)}
            )
        ]

        if len(text) > PARTIAL_TEXT_LENGTH:
            partial = text[:PARTIAL_TEXT_LENGTH].replace('"', '\\"')
            # :text() matches a case-insensitive substring
            candidates.append(SelectorCandidate(
                SelectorStrategy.TEXT, f'{signature.tag_name}:text("{partial}")', 0.55, 35,
                context={"partial_text": True}
            ))

        candidates.append(SelectorCandidate(
            SelectorStrategy.TEXT, f'{signature.tag_name}:has-text("{quoted}")', 0.70, 45,
            context={"tag_with_text": True}
        ))
        return candidates

    def _structural_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        parent = signature.parent_tag
        if not parent:
            return []

        tag = signature.tag_name
        siblings = signature.siblings_count
        index = signature.structure.sibling_index
        candidates = []

        if siblings == 1:
            candidates.append(SelectorCandidate(
                SelectorStrategy.STRUCTURAL, f"{parent} > {tag}:only-child", 0.85, 80,
                context={"type": "only-child"}
            ))
            return candidates

        if siblings > 1 and index:
            candidates.append(SelectorCandidate(
                SelectorStrategy.STRUCTURAL, f"{parent} > {tag}:nth-child({index})", 0.60, 50,
                context={"type": "nth-child", "index": index}
            ))
            if index == 1:
                candidates.append(SelectorCandidate(
                    SelectorStrategy.STRUCTURAL, f"{parent} > {tag}:first-child", 0.65, 55,
                    context={"type": "first-child"}
                ))
            if index == siblings:
                candidates.append(SelectorCandidate(
                    SelectorStrategy.STRUCTURAL, f"{parent} > {tag}:last-child", 0.65, 55,
                    context={"type": "last-child"}
                ))

        return candidates

    def _state_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        tag = signature.tag_name
        candidates = []

        form = signature.form
        if form:
            states = []
            if form.disabled:
                states.append("disabled")
            if form.required:
                states.append("required")
            if form.readonly:
                states.append("read-only")
            if not form.valid:
                states.append("invalid")
            for state in states:
                candidates.append(SelectorCandidate(
                    SelectorStrategy.STATE_BASED, f"{tag}:{state}", 0.75, 60,
                    context={"state": state}
                ))

        if signature.structure.is_visible:
            candidates.append(SelectorCandidate(
                SelectorStrategy.STATE_BASED, f"{tag}:visible", 0.60, 40,
                context={"state": "visible"}
            ))

        if signature.structure.is_interactive:
            candidates.append(SelectorCandidate(
                SelectorStrategy.STATE_BASED, f"{tag}:enabled", 0.65, 45,
                context={"state": "enabled"}
            ))

        return candidates

    def _aria_relationship_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        aria = signature.aria
        candidates = []

        if aria.labelled_by:
            candidates.append(SelectorCandidate(
                SelectorStrategy.ARIA_RELATIONSHIP, f"[aria-labelledby={css_quote(aria.labelled_by)}]", 0.85, 80,
                context={"relationship": "labelledby"}
            ))
        if aria.described_by:
            candidates.append(SelectorCandidate(
                SelectorStrategy.ARIA_RELATIONSHIP, f"[aria-describedby={css_quote(aria.described_by)}]", 0.82, 75,
                context={"relationship": "describedby"}
            ))
        if aria.controls:
            candidates.append(SelectorCandidate(
                SelectorStrategy.ARIA_RELATIONSHIP, f"[aria-controls={css_quote(aria.controls)}]", 0.78, 70,
                context={"relationship": "controls"}
            ))
        if aria.expanded is not None:
            candidates.append(SelectorCandidate(
                SelectorStrategy.ARIA_RELATIONSHIP, f"[aria-expanded={css_quote(aria.expanded)}]", 0.70, 60,
                context={"relationship": "expanded"}
            ))

        return candidates

    def _form_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        form = signature.form
        if not form:
            return []

        tag = signature.tag_name
        candidates = []

        if form.name:
            candidates.append(SelectorCandidate(
                SelectorStrategy.FORM, f"{tag}[name={css_quote(form.name)}]", 0.88, 85,
                context={"attribute": "name"}
            ))
        if form.input_type:
            candidates.append(SelectorCandidate(
                SelectorStrategy.FORM, f"{tag}[type={css_quote(form.input_type)}]", 0.70, 55,
                context={"attribute": "type"}
            ))
        if form.placeholder:
            candidates.append(SelectorCandidate(
                SelectorStrategy.FORM, f"{tag}[placeholder={css_quote(form.placeholder)}]", 0.75, 60,
                context={"attribute": "placeholder"}
            ))
        if form.form_id and is_css_identifier(form.form_id):
            candidates.append(SelectorCandidate(
                SelectorStrategy.FORM, f"form#{form.form_id} {tag}", 0.80, 70,
                context={"form_associated": True}
            ))

        return candidates

    def _pseudo_element_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        pseudo = signature.pseudo_elements
        if not (pseudo.get("before") or pseudo.get("after")):
            return []
        return [SelectorCandidate(
            SelectorStrategy.PSEUDO_ELEMENT, f"{signature.tag_name}:has-pseudo-element", 0.60, 45,
            context={"has_before": bool(pseudo.get("before")), "has_after": bool(pseudo.get("after"))},
            probeable=False
        )]

    def _xpath_selectors(self, signature: ElementSignature) -> List[SelectorCandidate]:
        tag = signature.tag_name
        candidates = [SelectorCandidate(
            SelectorStrategy.XPATH, f"//{tag}", 0.30, 20,
            context={"type": "simple"}
        )]

        classes = signature.classes
        if classes:
            candidates.append(SelectorCandidate(
                SelectorStrategy.XPATH, f"//{tag}[contains(@class, {xpath_quote(classes[0])})]", 0.40, 30,
                context={"type": "class-based"}
            ))

        text = signature.text_content.strip() if signature.text_content else ""
        if text and len(text) < XPATH_TEXT_MAX_LENGTH:
            candidates.append(SelectorCandidate(
                SelectorStrategy.XPATH,
                f"//{tag}[contains(text(), {xpath_quote(text[:PARTIAL_TEXT_LENGTH])})]", 0.45, 35,
                context={"type": "text-based"}
            ))

        if signature.parent_tag:
            candidates.append(SelectorCandidate(
                SelectorStrategy.XPATH, f"//{signature.parent_tag}/{tag}", 0.50, 40,
                context={"type": "parent-child"}
            ))

        return candidates

    # ==================== Optimization ====================

    def optimize_selectors(
        self,
        candidates: List[SelectorCandidate],
        performance_data: Mapping[str, Any],
        tuning: Optional[OptimizationTuning] = None
    ) -> List[SelectorCandidate]:
        """
        Re-rank candidates by historical performance.

        Args:
            candidates: Candidates to adjust (left untouched)
            performance_data: selector -> entry with success_rate,
                average_latency_ms and attempts
            tuning: Override the generator's tuning constants

        Returns:
            New candidate list sorted by overall score
        """
        return optimize_selectors(candidates, performance_data, tuning or self.tuning)


def optimize_selectors(
    candidates: List[SelectorCandidate],
    performance_data: Mapping[str, Any],
    tuning: OptimizationTuning = DEFAULT_TUNING
) -> List[SelectorCandidate]:
    """Boost fast reliable selectors and penalize slow or flaky ones"""
    optimized = []

    for candidate in candidates:
        perf = performance_data.get(candidate.selector)
        if perf is None or not perf.attempts:
            optimized.append(replace(candidate, confidence=_clamp(candidate.confidence, tuning)))
            continue

        confidence = candidate.confidence
        stability = candidate.stability
        rate = perf.success_rate
        latency = perf.average_latency_ms

        if rate > tuning.boost_success_rate and latency < tuning.boost_max_latency_ms:
            confidence += tuning.boost_amount
            stability = min(1.0, stability + tuning.boost_amount)

        if rate < tuning.penalty_success_rate or latency > tuning.penalty_min_latency_ms:
            confidence -= tuning.penalty_amount
            stability = max(tuning.min_confidence, stability - tuning.penalty_amount)

        optimized.append(replace(
            candidate,
            confidence=_clamp(confidence, tuning),
            stability=stability,
            performance={
                "success_rate": rate,
                "average_latency_ms": latency,
                "attempts": perf.attempts,
            },
        ))

    optimized.sort(key=lambda c: c.overall_score, reverse=True)
    return optimized


def _clamp(confidence: float, tuning: OptimizationTuning) -> float:
    return max(tuning.min_confidence, min(tuning.max_confidence, confidence))


def _dedupe(candidates: List[SelectorCandidate]) -> List[SelectorCandidate]:
    """Keep the highest-confidence candidate per selector string"""
    best: Dict[str, SelectorCandidate] = {}
    for candidate in candidates:
        existing = best.get(candidate.selector)
        if existing is None or candidate.confidence > existing.confidence:
            best[candidate.selector] = candidate
    return list(best.values())
