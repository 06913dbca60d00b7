"""
Performance Ledger

Accumulates selector and element outcomes across healing runs. Counters
only grow; success rate and average latency are derived on read.

Entries are kept per selector, per element id, and per
(element id, selector) pair. Each table is bounded and evicts the least
recently used entry once full.

Also evaluates performance alerts over recent selector use and holds the
append-only healing audit trail.
"""

import logging
import threading
from collections import OrderedDict, deque, Counter
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Any, Optional, Tuple

# Configure logging
logger = logging.getLogger(__name__)


# Uses kept per entry for recent-trend alerts
RECENT_WINDOW = 10


@dataclass
class LedgerEntry:
    """Outcome counters for a selector or element"""
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0
    last_used: Optional[str] = None
    # Last RECENT_WINDOW outcomes as (success, latency_ms), oldest first
    recent: Tuple[Tuple[bool, float], ...] = ()

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    @property
    def average_latency_ms(self) -> float:
        return self.total_latency_ms / self.attempts if self.attempts else 0.0

    @property
    def recent_success_rate(self) -> float:
        if not self.recent:
            return 0.0
        return sum(1 for success, _ in self.recent if success) / len(self.recent)

    @property
    def recent_average_latency_ms(self) -> float:
        if not self.recent:
            return 0.0
        return sum(latency for _, latency in self.recent) / len(self.recent)

    def record(self, success: bool, latency_ms: float):
        latency_ms = max(0.0, latency_ms)
        self.attempts += 1
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.total_latency_ms += latency_ms
        self.recent = (self.recent + ((success, latency_ms),))[-RECENT_WINDOW:]
        self.last_used = datetime.utcnow().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": round(self.success_rate, 4),
            "average_latency_ms": round(self.average_latency_ms, 2),
            "last_used": self.last_used,
        }


class PerformanceLedger:
    """
    Thread-safe, bounded outcome ledger.

    Usage:
        ledger = PerformanceLedger()
        ledger.record_probe("login-btn", "#login", success=True, latency_ms=12)
        ledger.top_selectors_for("login-btn")
    """

    def __init__(self, max_entries: int = 5000):
        self.max_entries = max_entries
        self._selectors: "OrderedDict[str, LedgerEntry]" = OrderedDict()
        self._elements: "OrderedDict[str, LedgerEntry]" = OrderedDict()
        self._pairs: "OrderedDict[Tuple[str, str], LedgerEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def _touch(self, table: OrderedDict, key: Any) -> LedgerEntry:
        entry = table.get(key)
        if entry is None:
            entry = LedgerEntry()
            table[key] = entry
            while len(table) > self.max_entries:
                evicted, _ = table.popitem(last=False)
                logger.debug(f"Ledger evicted {evicted!r}")
        else:
            table.move_to_end(key)
        return entry

    def record_probe(self, element_id: str, selector: str, success: bool, latency_ms: float):
        """
        Record the outcome of probing one selector for an element.

        Args:
            element_id: Tracked element id
            selector: Selector that was probed
            success: Whether the probe produced an accepted element
            latency_ms: Time the probe took
        """
        with self._lock:
            self._touch(self._selectors, selector).record(success, latency_ms)
            self._touch(self._pairs, (element_id, selector)).record(success, latency_ms)

    def record_request(self, element_id: str, success: bool, latency_ms: float):
        """Record the outcome of a whole healing request for an element"""
        with self._lock:
            self._touch(self._elements, element_id).record(success, latency_ms)

    def top_selectors_for(self, element_id: str, limit: int = 5) -> List[Tuple[str, LedgerEntry]]:
        """
        Selectors that have worked for an element, best success rate first.

        Selectors that never succeeded are left out.
        """
        with self._lock:
            rows = [
                (selector, replace(entry))
                for (eid, selector), entry in self._pairs.items()
                if eid == element_id and entry.success_rate > 0
            ]
        rows.sort(key=lambda row: (row[1].success_rate, row[1].attempts), reverse=True)
        return rows[:limit]

    def performance_data(self) -> Dict[str, LedgerEntry]:
        """Snapshot of per-selector entries"""
        with self._lock:
            return {selector: replace(entry) for selector, entry in self._selectors.items()}

    def selector_entry(self, selector: str) -> Optional[LedgerEntry]:
        with self._lock:
            entry = self._selectors.get(selector)
            return replace(entry) if entry else None

    def element_entry(self, element_id: str) -> Optional[LedgerEntry]:
        with self._lock:
            entry = self._elements.get(element_id)
            return replace(entry) if entry else None

    def element_performance(self) -> Dict[str, LedgerEntry]:
        with self._lock:
            return {element_id: replace(entry) for element_id, entry in self._elements.items()}

    def top_performing(self, limit: int = 10) -> List[Tuple[str, LedgerEntry]]:
        rows = list(self.performance_data().items())
        rows.sort(key=lambda row: (row[1].success_rate, row[1].attempts), reverse=True)
        return rows[:limit]

    def frequently_failing(self, limit: int = 10) -> List[Tuple[str, LedgerEntry]]:
        rows = [row for row in self.performance_data().items() if row[1].failures > 0]
        rows.sort(key=lambda row: (row[1].failures, -row[1].success_rate), reverse=True)
        return rows[:limit]

    def forget_element(self, element_id: str):
        """Drop the per-element and per-pair entries for an element"""
        with self._lock:
            self._elements.pop(element_id, None)
            for key in [k for k in self._pairs if k[0] == element_id]:
                del self._pairs[key]

    def clear(self):
        with self._lock:
            self._selectors.clear()
            self._elements.clear()
            self._pairs.clear()


# ==================== Performance Alerts ====================

@dataclass(frozen=True)
class AlertThresholds:
    """Limits that raise performance alerts"""
    slow_selector_ms: float = 1000.0
    low_success_rate: float = 0.7
    high_failure_rate: float = 0.3
    # Healing requests needed before the failure rate is judged
    min_requests: int = 100
    # Recommendation limits
    recommend_failure_rate: float = 0.2
    recommend_average_ms: float = 1000.0


DEFAULT_THRESHOLDS = AlertThresholds()


@dataclass(frozen=True)
class PerformanceAlert:
    """A threshold crossed by a selector or by healing as a whole"""
    type: str  # "low_success_rate" / "slow_selector" / "high_error_rate"
    subject: str
    message: str
    severity: str = "warning"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "subject": self.subject,
            "message": self.message,
            "severity": self.severity,
        }


def evaluate_alerts(
    ledger: PerformanceLedger,
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS
) -> List[PerformanceAlert]:
    """
    Check the ledger against the alert thresholds.

    Selectors are judged on their last RECENT_WINDOW uses and only once
    that many uses are on record. The healing failure rate is judged once
    more than min_requests requests were made.

    Returns:
        Alerts, selector alerts first
    """
    alerts = []

    for selector, entry in ledger.performance_data().items():
        if len(entry.recent) < RECENT_WINDOW:
            continue
        if entry.recent_success_rate < thresholds.low_success_rate:
            alerts.append(PerformanceAlert(
                "low_success_rate", selector,
                f"Selector {selector} has low success rate: {entry.recent_success_rate * 100:.1f}%"
            ))
        if entry.recent_average_latency_ms > thresholds.slow_selector_ms:
            alerts.append(PerformanceAlert(
                "slow_selector", selector,
                f"Selector {selector} is slow: {entry.recent_average_latency_ms:.0f}ms average"
            ))

    elements = ledger.element_performance().values()
    requests = sum(e.attempts for e in elements)
    if requests > thresholds.min_requests:
        failure_rate = sum(e.failures for e in elements) / requests
        if failure_rate > thresholds.high_failure_rate:
            alerts.append(PerformanceAlert(
                "high_error_rate", "healing",
                f"Healing failure rate is high: {failure_rate * 100:.1f}%"
            ))

    return alerts


def recommend(
    ledger: PerformanceLedger,
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS
) -> List[Dict[str, str]]:
    """
    Suggestions derived from the ledger.

    Returns:
        List of dicts with type, message and priority
    """
    recommendations = []

    worst = [
        selector for selector, entry in ledger.frequently_failing(10)
        if entry.success_rate < thresholds.low_success_rate
    ][:3]
    if worst:
        recommendations.append({
            "type": "selector_optimization",
            "message": f"Consider optimizing selectors with low success rates: {', '.join(worst)}",
            "priority": "high",
        })

    elements = ledger.element_performance().values()
    requests = sum(e.attempts for e in elements)
    if requests:
        failure_rate = sum(e.failures for e in elements) / requests
        average_ms = sum(e.total_latency_ms for e in elements) / requests
        if failure_rate > thresholds.recommend_failure_rate:
            recommendations.append({
                "type": "error_rate",
                "message": "High healing failure rate. Review element registration and selector strategies.",
                "priority": "high",
            })
        if average_ms > thresholds.recommend_average_ms:
            recommendations.append({
                "type": "performance",
                "message": "Average healing time is high. Consider lowering selector timeouts or attempts.",
                "priority": "medium",
            })

    return recommendations


# ==================== Audit Trail ====================

@dataclass(frozen=True)
class HealingAttemptRecord:
    """One healing request and how it ended"""
    element_id: str
    outcome: str  # "healed" / "not_found"
    selector: Optional[str] = None
    stage: Optional[str] = None
    similarity: Optional[float] = None
    duration_ms: float = 0.0
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element_id": self.element_id,
            "outcome": self.outcome,
            "selector": self.selector,
            "stage": self.stage,
            "similarity": self.similarity,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }


class HealingAuditTrail:
    """Append-only, size-bounded log of healing attempts"""

    def __init__(self, max_records: int = 1000):
        self._records: deque = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def append(self, record: HealingAttemptRecord):
        with self._lock:
            self._records.append(record)

    def records(self, element_id: Optional[str] = None) -> List[HealingAttemptRecord]:
        with self._lock:
            records = list(self._records)
        if element_id is not None:
            records = [r for r in records if r.element_id == element_id]
        return records

    def stage_breakdown(self) -> Dict[str, int]:
        """Healed-request count per stage"""
        counts = Counter(r.stage for r in self.records() if r.outcome == "healed" and r.stage)
        return dict(counts)

    def __len__(self):
        return len(self._records)
