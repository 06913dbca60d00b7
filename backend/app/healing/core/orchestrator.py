"""
Healing Orchestrator

Cascading state machine that re-locates an element whose selector broke.

Stage Order:
1. Primary selector - the caller's (possibly stale) selector
2. Cached selectors - best historical selectors for this element
3. History based - candidates generated from the last signature
4. Adaptive context - page-aware probes (frameworks, modals, theme, animations)
5. Predictive - scorer-ranked candidates at a lower confidence bar
6. Comprehensive search - attribute and text substring searches

The first accepted element wins and later stages never run. Every
element found after stage 1 (and in stage 1 when history exists) must
pass the similarity gate against the last known signature.
"""

import time
import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional, Set, Tuple

from .exceptions import (
    ProbeUnavailable,
    CandidateInvalid,
    SimilarityBelowThreshold,
    HealingTimeout,
)
from .probe import Probe, PageContext
from .signature import ElementSignature, capture, similarity
from .selector_generator import (
    SelectorGenerator,
    SelectorCandidate,
    css_quote,
    is_css_identifier,
)
from .state import HealingState
from ..config import HealingConfig
from ..knowledge.candidate_scorer import CandidateScorer, TrainingSample
from ..knowledge.performance_ledger import HealingAttemptRecord

# Configure logging
logger = logging.getLogger(__name__)


class HealingStage(Enum):
    """Stages of a healing run, in execution order"""
    PRIMARY_SELECTOR = "primary_selector"
    CACHED_SELECTORS = "cached_selectors"
    HISTORY_BASED = "history_based"
    ADAPTIVE_CONTEXT = "adaptive_context"
    PREDICTIVE = "predictive"
    COMPREHENSIVE_SEARCH = "comprehensive_search"


@dataclass
class HealingOptions:
    """Per-request healing settings"""
    max_attempts: int = 5
    similarity_threshold: float = 0.7
    selector_timeout_ms: int = 2000
    enable_predictive: bool = True
    predictive_threshold: float = 0.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        for name in ("similarity_threshold", "predictive_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.selector_timeout_ms <= 0:
            raise ValueError(f"selector_timeout_ms must be > 0, got {self.selector_timeout_ms}")

    @classmethod
    def from_config(cls, config: HealingConfig, **overrides) -> "HealingOptions":
        values = {
            "max_attempts": config.max_healing_attempts,
            "similarity_threshold": config.similarity_threshold,
            "selector_timeout_ms": config.selector_timeout_ms,
            "enable_predictive": config.enable_predictive,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class HealingMatch:
    """An element was located"""
    element_id: str
    handle: Any
    selector: str
    stage: HealingStage
    similarity: Optional[float]
    model_similarity: Optional[float] = None
    signature: Optional[ElementSignature] = None
    attempts: Dict[str, int] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def found(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": True,
            "element_id": self.element_id,
            "selector": self.selector,
            "stage": self.stage.value,
            "similarity": round(self.similarity, 4) if self.similarity is not None else None,
            "model_similarity": (
                round(self.model_similarity, 4) if self.model_similarity is not None else None
            ),
            "signature": self.signature.to_dict() if self.signature else None,
            "attempts": dict(self.attempts),
            "reasons": list(self.reasons),
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class NotFound:
    """Every stage was exhausted without an accepted element"""
    element_id: str
    attempts: Dict[str, int] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def found(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": False,
            "element_id": self.element_id,
            "attempts": dict(self.attempts),
            "reasons": list(self.reasons),
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class AdaptiveStrategy:
    """A page-context specific group of probes"""
    name: str
    priority: int
    selectors: List[str]
    timeout_ms: int


class _RunContext:
    """Bookkeeping for one healing run"""

    def __init__(self, element_id: str, reference: Optional[ElementSignature]):
        self.element_id = element_id
        self.reference = reference
        self.tried: Set[str] = set()
        self.attempts: "OrderedDict[str, int]" = OrderedDict(
            (stage.value, 0) for stage in HealingStage
        )
        self.reasons: List[str] = []
        self.optimized: Optional[List[SelectorCandidate]] = None
        self.started = time.monotonic()

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def note(self, message: str):
        self.reasons.append(message)
        logger.debug(f"[{self.element_id}] {message}")


class HealingOrchestrator:
    """
    Runs the healing stages against a probe.

    The orchestrator owns no state of its own; the ledger, audit trail,
    candidate cache and training buffer all live in HealingState.
    """

    # Extra time allowed for inspecting a located element
    INSPECT_TIMEOUT_MS = 1000

    # Adaptive strategy priorities
    PRIORITY_REACT = 8
    PRIORITY_ANGULAR = 8
    PRIORITY_MODAL = 7
    PRIORITY_DARK_THEME = 6
    PRIORITY_ANIMATION = 5

    MODAL_CONTAINERS = ('[role="dialog"]', ".modal", ".modal-dialog")

    # Longest text used for the text substring search
    SEARCH_TEXT_LIMIT = 50

    def __init__(
        self,
        probe: Probe,
        generator: SelectorGenerator,
        scorer: CandidateScorer,
        state: HealingState
    ):
        self.probe = probe
        self.generator = generator
        self.scorer = scorer
        self.state = state

    async def heal(
        self,
        element_id: str,
        primary_selector: Optional[str],
        history: List[ElementSignature],
        options: Optional[HealingOptions] = None
    ):
        """
        Locate an element, healing its selector if needed.

        Args:
            element_id: Tracked element id
            primary_selector: Selector the caller last used (may be stale)
            history: Signatures of the element, oldest first
            options: Healing settings

        Returns:
            HealingMatch or NotFound

        Raises:
            ProbeUnavailable: The page behind the probe is gone
        """
        options = options or HealingOptions()
        reference = history[-1] if history else None
        ctx = _RunContext(element_id, reference)

        logger.info(f"Healing element {element_id} (primary: {primary_selector!r})")

        match = None
        if primary_selector:
            match = await self._try_candidate(
                ctx, primary_selector, HealingStage.PRIMARY_SELECTOR, options,
                gate=reference is not None
            )
        else:
            ctx.note("primary_selector: no selector supplied")

        if match is None and reference is None:
            ctx.note("no signature history; stages 2-6 skipped")
        elif match is None:
            for stage_runner in (
                self._stage_cached,
                self._stage_history,
                self._stage_adaptive,
                self._stage_predictive,
                self._stage_comprehensive,
            ):
                match = await stage_runner(ctx, options, primary_selector)
                if match is not None:
                    break

        if match is not None:
            return self._finish_match(ctx, match)
        return self._finish_not_found(ctx)

    # ==================== Stages ====================

    async def _stage_cached(self, ctx: _RunContext, options: HealingOptions, primary: Optional[str]):
        top = self.state.ledger.top_selectors_for(ctx.element_id, limit=5)
        if not top:
            ctx.note("cached_selectors: no successful selectors on record")
            return None

        for selector, _ in top:
            match = await self._try_candidate(ctx, selector, HealingStage.CACHED_SELECTORS, options)
            if match:
                return match
        return None

    async def _stage_history(self, ctx: _RunContext, options: HealingOptions, primary: Optional[str]):
        optimized = self._optimized_candidates(ctx)
        ranked = self.scorer.predict_selectors(ctx.reference, optimized)
        untried = [c for c in ranked if c.probeable and c.selector not in ctx.tried][:options.max_attempts]
        if not untried:
            ctx.note("history_based: no candidates above the scorer threshold")
            return None

        for candidate in untried:
            match = await self._try_candidate(
                ctx, candidate.selector, HealingStage.HISTORY_BASED, options, candidate=candidate
            )
            if match:
                return match
        return None

    async def _stage_adaptive(self, ctx: _RunContext, options: HealingOptions, primary: Optional[str]):
        try:
            page_context = await self.probe.page_context()
        except ProbeUnavailable:
            raise
        except Exception as e:
            ctx.note(f"adaptive_context: page context unavailable ({e})")
            return None

        strategies = self.adaptive_strategies(ctx.element_id, page_context, primary, options)
        if not strategies:
            ctx.note("adaptive_context: no context-specific strategies apply")
            return None

        for strategy in strategies:
            logger.debug(f"Adaptive strategy {strategy.name} (priority {strategy.priority})")
            for selector in strategy.selectors:
                match = await self._try_candidate(
                    ctx, selector, HealingStage.ADAPTIVE_CONTEXT, options,
                    timeout_ms=strategy.timeout_ms
                )
                if match:
                    match.reasons.append(f"adaptive strategy: {strategy.name}")
                    return match
        return None

    async def _stage_predictive(self, ctx: _RunContext, options: HealingOptions, primary: Optional[str]):
        if not options.enable_predictive:
            ctx.note("predictive: disabled")
            return None

        predicted = self.scorer.predict_selectors(
            ctx.reference, self._optimized_candidates(ctx), threshold=options.predictive_threshold
        )
        untried = [c for c in predicted if c.probeable and c.selector not in ctx.tried][:options.max_attempts]
        if not untried:
            ctx.note("predictive: no untried predictions")
            return None

        for candidate in untried:
            match = await self._try_candidate(
                ctx, candidate.selector, HealingStage.PREDICTIVE, options, candidate=candidate
            )
            if match:
                return match
        return None

    async def _stage_comprehensive(self, ctx: _RunContext, options: HealingOptions, primary: Optional[str]):
        reference = ctx.reference
        searches = [
            ("attributes", self._search_by_attributes(ctx.element_id, reference)),
            ("text", self._search_by_text(ctx.element_id, reference)),
            ("position", self._search_by_position(reference)),
            ("structure", self._search_by_structure(reference)),
            ("styles", self._search_by_styles(reference)),
        ]

        for name, selector in searches:
            if not selector:
                continue
            match = await self._try_candidate(
                ctx, selector, HealingStage.COMPREHENSIVE_SEARCH, options, use_wait=False
            )
            if match:
                match.reasons.append(f"comprehensive search: {name}")
                return match
        return None

    # ==================== Adaptive Strategies ====================

    def adaptive_strategies(
        self,
        element_id: str,
        page_context: PageContext,
        primary: Optional[str],
        options: HealingOptions
    ) -> List[AdaptiveStrategy]:
        """
        Context-specific probe groups for the current page, highest priority first.
        """
        quoted = css_quote(element_id)
        timeout_ms = options.selector_timeout_ms
        strategies = []
        frameworks = {f.lower() for f in page_context.frameworks}

        if "react" in frameworks:
            selectors = [
                f"[data-reactid*={quoted}]",
                f"[data-react-component*={quoted}]",
            ]
            if is_css_identifier(element_id):
                selectors.append(f".{element_id}-component")
            selectors.append(f"[class*={quoted}]")
            strategies.append(AdaptiveStrategy("react-component", self.PRIORITY_REACT, selectors, timeout_ms))

        if "angular" in frameworks:
            strategies.append(AdaptiveStrategy("angular-component", self.PRIORITY_ANGULAR, [
                f"[formcontrolname={quoted}]",
                f"[ng-reflect-name={quoted}]",
                f"[ng-reflect-id*={quoted}]",
            ], timeout_ms))

        if page_context.has_modals:
            selectors = []
            for container in self.MODAL_CONTAINERS:
                if is_css_identifier(element_id):
                    selectors.append(f"{container} #{element_id}")
                selectors.append(f"{container} [data-testid={quoted}]")
                if is_css_identifier(element_id):
                    selectors.append(f"{container} .{element_id}")
            strategies.append(AdaptiveStrategy("modal-aware-search", self.PRIORITY_MODAL, selectors, timeout_ms))

        if page_context.theme == "dark":
            strategies.append(AdaptiveStrategy("dark-theme-selectors", self.PRIORITY_DARK_THEME, [
                f'[data-theme="dark"] [id={quoted}]',
                f'[data-theme="dark"] [data-testid={quoted}]',
                f".dark [data-testid={quoted}]",
                f".theme-dark [data-testid={quoted}]",
            ], timeout_ms))

        if page_context.has_animations:
            # Wait longer for elements that are still transitioning in
            selectors = [f"[data-testid={quoted}]", f"[id={quoted}]"]
            if primary:
                selectors.insert(0, primary)
            strategies.append(AdaptiveStrategy(
                "animation-aware-search", self.PRIORITY_ANIMATION, selectors, timeout_ms * 2
            ))

        strategies.sort(key=lambda s: s.priority, reverse=True)
        return strategies

    # ==================== Comprehensive Search ====================

    def _search_by_attributes(self, element_id: str, reference: Optional[ElementSignature]) -> Optional[str]:
        needles = [element_id]
        if reference is not None:
            old_id = reference.attribute("id")
            if old_id and old_id not in needles:
                needles.append(old_id)

        parts = []
        for needle in needles:
            quoted = css_quote(needle)
            parts.extend([f"[id*={quoted}]", f"[data-testid*={quoted}]", f"[name*={quoted}]"])
        return ", ".join(parts)

    def _search_by_text(self, element_id: str, reference: Optional[ElementSignature]) -> Optional[str]:
        text = ""
        if reference is not None and reference.text_content:
            text = " ".join(reference.text_content.split())[:self.SEARCH_TEXT_LIMIT]
        needle = text or element_id
        if not needle:
            return None
        # Unquoted text= matches case-insensitive substrings
        return f"text={needle}"

    def _search_by_position(self, reference: Optional[ElementSignature]) -> Optional[str]:
        """Selector for the element near the remembered position; override to enable"""
        return None

    def _search_by_structure(self, reference: Optional[ElementSignature]) -> Optional[str]:
        """Selector from remembered DOM structure; override to enable"""
        return None

    def _search_by_styles(self, reference: Optional[ElementSignature]) -> Optional[str]:
        """Selector from remembered computed styles; override to enable"""
        return None

    # ==================== Probing ====================

    def _optimized_candidates(self, ctx: _RunContext) -> List[SelectorCandidate]:
        if ctx.optimized is None:
            reference = ctx.reference
            key = reference.signature_hash()
            candidates = self.state.cache.get(key)
            if candidates is None:
                candidates = self.generator.generate(reference)
                self.state.cache.put(key, candidates)
            ctx.optimized = self.generator.optimize_selectors(
                candidates, self.state.ledger.performance_data()
            )
        return ctx.optimized

    async def _locate(self, selector: str, timeout_ms: int, use_wait: bool) -> Tuple[Any, Optional[ElementSignature]]:
        if use_wait:
            handle = await self.probe.wait_for(selector, timeout_ms)
        else:
            handle = await self.probe.query(selector)
        if handle is None:
            return None, None
        facts = await self.probe.inspect(handle)
        return handle, capture(facts)

    async def _locate_within(
        self,
        selector: str,
        stage: HealingStage,
        timeout_ms: int,
        use_wait: bool
    ) -> Tuple[Any, Optional[ElementSignature]]:
        """Locate and inspect one selector within its time budget"""
        try:
            return await asyncio.wait_for(
                self._locate(selector, timeout_ms, use_wait),
                timeout=(timeout_ms + self.INSPECT_TIMEOUT_MS) / 1000
            )
        except asyncio.TimeoutError:
            raise HealingTimeout(f"{stage.value}: {selector!r}", timeout_ms) from None

    async def _try_candidate(
        self,
        ctx: _RunContext,
        selector: str,
        stage: HealingStage,
        options: HealingOptions,
        candidate: Optional[SelectorCandidate] = None,
        gate: bool = True,
        timeout_ms: Optional[int] = None,
        use_wait: bool = True
    ) -> Optional[HealingMatch]:
        """
        Probe one selector and gate the result.

        Returns:
            HealingMatch when accepted, None when this candidate failed
        """
        if selector in ctx.tried:
            return None
        ctx.tried.add(selector)
        ctx.attempts[stage.value] += 1

        timeout_ms = timeout_ms or options.selector_timeout_ms
        started = time.monotonic()
        match = None

        try:
            handle, found = await self._locate_within(selector, stage, timeout_ms, use_wait)
            if handle is None:
                ctx.note(f"{stage.value}: {selector!r} matched nothing")
            else:
                score = None
                model_score = None
                if gate and ctx.reference is not None:
                    score = similarity(ctx.reference, found)
                    if score < options.similarity_threshold:
                        raise SimilarityBelowThreshold(selector, score, options.similarity_threshold)
                    model_score = self.scorer.similarity(ctx.reference, found)
                match = HealingMatch(
                    element_id=ctx.element_id,
                    handle=handle,
                    selector=selector,
                    stage=stage,
                    similarity=score,
                    model_similarity=model_score,
                    signature=found,
                )
        except ProbeUnavailable:
            raise
        except HealingTimeout as e:
            ctx.note(str(e))
        except CandidateInvalid as e:
            ctx.note(f"{stage.value}: {e}")
        except SimilarityBelowThreshold as e:
            ctx.note(f"{stage.value}: {e}")
        except Exception as e:
            logger.warning(f"Probe of {selector!r} failed: {e}")
            ctx.note(f"{stage.value}: {selector!r} failed ({e})")

        latency_ms = (time.monotonic() - started) * 1000
        self.state.ledger.record_probe(ctx.element_id, selector, match is not None, latency_ms)
        if candidate is not None:
            self.state.add_training_sample(TrainingSample(
                strategy=candidate.strategy.value,
                selector=selector,
                success=match is not None,
            ))
        return match

    # ==================== Outcomes ====================

    def _finish_match(self, ctx: _RunContext, match: HealingMatch) -> HealingMatch:
        match.attempts = dict(ctx.attempts)
        match.reasons = ctx.reasons + match.reasons
        match.duration_ms = ctx.elapsed_ms()

        self.state.audit.append(HealingAttemptRecord(
            element_id=ctx.element_id,
            outcome="healed",
            selector=match.selector,
            stage=match.stage.value,
            similarity=match.similarity,
            duration_ms=match.duration_ms,
            timestamp=_now(),
        ))
        self.state.ledger.record_request(ctx.element_id, True, match.duration_ms)

        similarity_note = f"{match.similarity:.2f}" if match.similarity is not None else "n/a"
        logger.info(
            f"Element {ctx.element_id} found via {match.stage.value}: {match.selector} "
            f"(similarity: {similarity_note})"
        )
        return match

    def _finish_not_found(self, ctx: _RunContext) -> NotFound:
        result = NotFound(
            element_id=ctx.element_id,
            attempts=dict(ctx.attempts),
            reasons=list(ctx.reasons),
            duration_ms=ctx.elapsed_ms(),
        )
        self.state.audit.append(HealingAttemptRecord(
            element_id=ctx.element_id,
            outcome="not_found",
            duration_ms=result.duration_ms,
            timestamp=_now(),
        ))
        self.state.ledger.record_request(ctx.element_id, False, result.duration_ms)

        logger.warning(
            f"All healing strategies failed for element {ctx.element_id} "
            f"after {sum(result.attempts.values())} attempts"
        )
        return result


def _now() -> str:
    return datetime.utcnow().isoformat()
