"""
Element Healing Service

Facade over the healing engine. Registers elements, finds them again
with self-healing, reports on healing performance and checks registered
elements against the current page.

One service processes one healing request at a time. start() launches
the periodic cache cleanup and alert check; stop() cancels it.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Any, Optional, Set, Tuple, Union

from ..config import HealingConfig
from .exceptions import ElementNotRegistered, ProbeUnavailable, SelectorNotMatched
from .probe import Probe
from .signature import ElementSignature, capture, similarity, detect_changes
from .selector_generator import SelectorGenerator
from .state import HealingState
from .orchestrator import HealingOrchestrator, HealingOptions, HealingMatch, NotFound
from ..knowledge.candidate_scorer import CandidateScorer, HeuristicCandidateScorer
from ..knowledge.performance_ledger import AlertThresholds, PerformanceAlert, evaluate_alerts, recommend

# Configure logging
logger = logging.getLogger(__name__)


class ElementHealingService:
    """
    Self-healing element locator service.

    Usage:
        service = ElementHealingService(PlaywrightProbe(page))
        await service.start()
        await service.register_by_selector("login-btn", "#login")
        result = await service.find_element_with_healing("login-btn", "#login")
        await service.stop()
    """

    # Seconds between candidate cache sweeps
    CLEANUP_INTERVAL_S = 300

    # Selectors returned from registration
    REGISTRATION_SELECTORS = 10

    # Page change analysis
    ANALYSIS_CANDIDATES = 5
    ANALYSIS_TIMEOUT_MS = 1000
    UNCHANGED_SIMILARITY = 0.95

    def __init__(
        self,
        probe: Probe,
        config: Optional[HealingConfig] = None,
        generator: Optional[SelectorGenerator] = None,
        scorer: Optional[CandidateScorer] = None,
        state: Optional[HealingState] = None,
        alert_thresholds: Optional[AlertThresholds] = None
    ):
        """
        Initialize the service.

        Args:
            probe: Browser probe used for every page interaction
            config: Healing configuration (defaults used when omitted)
            generator: Selector generator
            scorer: Candidate scorer backend
            state: Pre-built state, mainly for tests
            alert_thresholds: Limits for performance alerts
        """
        self.probe = probe
        self.config = config or HealingConfig()
        self.generator = generator or SelectorGenerator()
        self.scorer = scorer or HeuristicCandidateScorer()
        self.state = state or HealingState(self.config)
        self.orchestrator = HealingOrchestrator(probe, self.generator, self.scorer, self.state)
        self.alert_thresholds = alert_thresholds or AlertThresholds()

        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._raised_alerts: Set[Tuple[str, str]] = set()

    # ==================== Lifecycle ====================

    async def start(self):
        """Start the periodic candidate cache cleanup"""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Healing service started")

    async def stop(self):
        """Cancel the cleanup task and wait for it to finish"""
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Healing service stopped")

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.CLEANUP_INTERVAL_S)
            self.cleanup_cache()
            self.check_alerts()

    def cleanup_cache(self) -> int:
        removed = self.state.cache.purge_expired()
        if removed:
            logger.debug(f"Purged {removed} expired candidate cache entries")
        return removed

    # ==================== Registration ====================

    async def register_element(
        self,
        element_id: str,
        handle: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Capture an element's signature and start tracking it.

        Args:
            element_id: Caller-chosen id for the element
            handle: Probe handle for the element
            metadata: Free-form data kept with the element

        Returns:
            Dict with element_id, signature_hash, selectors (top 10),
            timestamp and metadata
        """
        logger.info(f"Registering element: {element_id}")

        facts = await self.probe.inspect(handle)
        signature = capture(facts, metadata)
        tracked = self.state.track(element_id, signature, metadata)

        candidates = self.generator.generate(signature)
        self.state.cache.put(signature.signature_hash(), candidates)

        probeable = [c for c in candidates if c.probeable]
        if tracked.last_selector is None and probeable:
            tracked.last_selector = probeable[0].selector

        logger.info(f"Element registered: {element_id} ({len(candidates)} candidates)")
        return {
            "element_id": element_id,
            "signature_hash": signature.signature_hash(),
            "selectors": [c.to_dict() for c in candidates[:self.REGISTRATION_SELECTORS]],
            "timestamp": signature.timestamp,
            "metadata": dict(tracked.metadata),
        }

    async def register_by_selector(
        self,
        element_id: str,
        selector: str,
        metadata: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None
    ) -> Dict[str, Any]:
        """Locate an element by selector and register it"""
        handle = await self.probe.wait_for(selector, timeout_ms or self.config.selector_timeout_ms)
        if handle is None:
            raise SelectorNotMatched(selector)

        result = await self.register_element(element_id, handle, metadata)
        self.state.get(element_id).last_selector = selector
        return result

    # ==================== Healing ====================

    async def find_element_with_healing(
        self,
        element_id: str,
        primary_selector: Optional[str] = None,
        options: Optional[HealingOptions] = None
    ) -> Union[HealingMatch, NotFound]:
        """
        Find a tracked element, healing its selector when it broke.

        Args:
            element_id: Tracked element id
            primary_selector: Selector to try first; defaults to the last
                selector that worked for this element
            options: Per-request overrides of the configured settings

        Returns:
            HealingMatch or NotFound
        """
        options = options or HealingOptions.from_config(self.config)

        async with self._lock:
            tracked = self.state.get(element_id)
            history = list(tracked.history) if tracked else []
            primary = primary_selector or (tracked.last_selector if tracked else None)

            result = await self.orchestrator.heal(element_id, primary, history, options)

            if result.found and tracked is not None:
                if result.signature is not None:
                    self.state.append_signature(element_id, result.signature)
                tracked.last_selector = result.selector

            self._maybe_retrain()
            return result

    def _maybe_retrain(self):
        if self.state.pending_training_samples < self.state.training_threshold:
            return
        samples = self.state.drain_training_samples()
        scorer = self.scorer.train(samples)
        self.scorer = scorer
        self.orchestrator.scorer = scorer
        logger.info(f"Candidate scorer updated to version {scorer.version}")

    # ==================== Reporting ====================

    def get_healing_report(self) -> Dict[str, Any]:
        """
        Summarize healing performance.

        Returns:
            Dict with totals, average healing time, top and failing
            selectors, per-element performance, per-stage counts, active
            alerts and recommendations
        """
        ledger = self.state.ledger
        elements = ledger.element_performance()

        total_attempts = sum(e.attempts for e in elements.values())
        successes = sum(e.successes for e in elements.values())
        failures = sum(e.failures for e in elements.values())
        total_time = sum(e.total_latency_ms for e in elements.values())

        return {
            "total_elements": len(self.state.elements),
            "total_attempts": total_attempts,
            "successful_healing": successes,
            "failed_healing": failures,
            "average_healing_time_ms": round(total_time / total_attempts, 2) if total_attempts else 0.0,
            "top_performing_selectors": [
                {"selector": selector, **entry.to_dict()}
                for selector, entry in ledger.top_performing(10)
            ],
            "frequently_failing_selectors": [
                {"selector": selector, **entry.to_dict()}
                for selector, entry in ledger.frequently_failing(10)
            ],
            "element_performance": [
                {"element_id": element_id, **entry.to_dict()}
                for element_id, entry in elements.items()
            ],
            "stage_breakdown": self.state.audit.stage_breakdown(),
            "alerts": [alert.to_dict() for alert in self.check_alerts()],
            "recommendations": recommend(ledger, self.alert_thresholds),
            "model": self.scorer.stats(),
            "timestamp": datetime.utcnow().isoformat(),
        }

    def check_alerts(self) -> List[PerformanceAlert]:
        """
        Evaluate performance alerts.

        Each alert is logged once when it is first raised and again only
        after it cleared and came back.

        Returns:
            Currently active alerts
        """
        alerts = evaluate_alerts(self.state.ledger, self.alert_thresholds)
        active = {(alert.type, alert.subject) for alert in alerts}
        for alert in alerts:
            if (alert.type, alert.subject) not in self._raised_alerts:
                logger.warning(f"Performance alert [{alert.type}]: {alert.message}")
        self._raised_alerts = active
        return alerts

    async def analyze_page_changes(self) -> Dict[str, Any]:
        """
        Check every registered element against the current page.

        Each element is looked up with its top generated candidates and
        classified as found (near-identical), changed or missing.

        Returns:
            Dict with total_elements, found, changed, missing, details
        """
        logger.info("Analyzing page changes for registered elements")

        analysis = {
            "total_elements": len(self.state.elements),
            "found": 0,
            "changed": 0,
            "missing": 0,
            "details": [],
            "timestamp": datetime.utcnow().isoformat(),
        }

        for element_id, tracked in list(self.state.elements.items()):
            reference = tracked.latest
            if reference is None:
                continue
            try:
                best = await self._best_match(reference)
            except ProbeUnavailable:
                raise
            except Exception as e:
                logger.error(f"Error analyzing element {element_id}: {e}")
                analysis["missing"] += 1
                analysis["details"].append({
                    "element_id": element_id,
                    "status": "error",
                    "error": str(e),
                })
                continue

            if best is None or best[0] <= self.config.similarity_threshold:
                analysis["missing"] += 1
                analysis["details"].append({
                    "element_id": element_id,
                    "status": "missing",
                    "last_seen": reference.timestamp,
                })
            elif best[0] > self.UNCHANGED_SIMILARITY:
                analysis["found"] += 1
            else:
                score, selector, current = best
                analysis["changed"] += 1
                analysis["details"].append({
                    "element_id": element_id,
                    "status": "changed",
                    "similarity": round(score, 4),
                    "selector": selector,
                    "changes": detect_changes(reference, current),
                })

        logger.info(
            f"Page analysis completed: {analysis['found']} found, "
            f"{analysis['changed']} changed, {analysis['missing']} missing"
        )
        return analysis

    async def _best_match(self, reference: ElementSignature):
        """Best (similarity, selector, signature) among the top candidates, or None"""
        best = None
        candidates = [c for c in self.generator.generate(reference) if c.probeable][:self.ANALYSIS_CANDIDATES]

        for candidate in candidates:
            try:
                handle = await asyncio.wait_for(
                    self.probe.wait_for(candidate.selector, self.ANALYSIS_TIMEOUT_MS),
                    timeout=self.ANALYSIS_TIMEOUT_MS * 2 / 1000
                )
                if handle is None:
                    continue
                current = capture(await self.probe.inspect(handle))
            except ProbeUnavailable:
                raise
            except Exception as e:
                logger.debug(f"Analysis probe {candidate.selector!r} failed: {e}")
                continue

            score = similarity(reference, current)
            if best is None or score > best[0]:
                best = (score, candidate.selector, current)
            if score > self.config.similarity_threshold:
                break

        return best

    # ==================== Registry ====================

    def get_element(self, element_id: str) -> ElementSignature:
        """Latest signature of a tracked element"""
        tracked = self.state.get(element_id)
        if tracked is None or tracked.latest is None:
            raise ElementNotRegistered(element_id)
        return tracked.latest

    def get_element_history(self, element_id: str) -> List[ElementSignature]:
        return self.state.history(element_id)

    def unregister_element(self, element_id: str) -> bool:
        removed = self.state.forget(element_id)
        if removed:
            logger.info(f"Element unregistered: {element_id}")
        return removed

    def clear_registry(self):
        self.state.clear()
        logger.info("Element registry cleared")
