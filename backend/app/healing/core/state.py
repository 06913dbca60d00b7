"""
Healing state.

Everything the healing service remembers lives here, passed around
explicitly: the element registry with bounded signature histories, the
performance ledger, the audit trail, the candidate cache and the scorer
training buffer. All of it is in-process and bounded.
"""

import time
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Any, Optional, Callable

from ..config import HealingConfig
from .signature import ElementSignature
from .selector_generator import SelectorCandidate
from ..knowledge.performance_ledger import PerformanceLedger, HealingAuditTrail
from ..knowledge.candidate_scorer import TrainingSample

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class TrackedElement:
    """A registered element and its recent signatures, oldest first"""
    element_id: str
    history: deque
    metadata: Dict[str, Any] = field(default_factory=dict)
    registered_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    last_selector: Optional[str] = None

    @property
    def latest(self) -> Optional[ElementSignature]:
        return self.history[-1] if self.history else None


class CandidateCache:
    """
    Generated candidates keyed by signature hash.

    Entries expire timeout_ms after they were stored. A timeout of 0
    disables caching.
    """

    def __init__(self, timeout_ms: int, clock: Callable[[], float] = time.monotonic):
        self.timeout_ms = timeout_ms
        self._clock = clock
        self._entries: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[List[SelectorCandidate]]:
        if not self.timeout_ms:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, candidates = entry
        if (self._clock() - stored_at) * 1000 >= self.timeout_ms:
            del self._entries[key]
            return None
        return list(candidates)

    def put(self, key: str, candidates: List[SelectorCandidate]):
        if not self.timeout_ms:
            return
        self._entries[key] = (self._clock(), list(candidates))

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed"""
        now = self._clock()
        expired = [
            key for key, (stored_at, _) in self._entries.items()
            if (now - stored_at) * 1000 >= self.timeout_ms
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)


class HealingState:
    """Bounded in-process state shared by the service and orchestrator"""

    def __init__(self, config: Optional[HealingConfig] = None):
        config = config or HealingConfig()
        self.history_limit = config.history_limit
        self.training_threshold = config.training_threshold
        self.elements: Dict[str, TrackedElement] = {}
        self.ledger = PerformanceLedger(max_entries=config.ledger_limit)
        self.audit = HealingAuditTrail(max_records=config.audit_trail_limit)
        self.cache = CandidateCache(config.cache_timeout_ms)
        self._training_samples: deque = deque(maxlen=config.training_threshold)

    # ==================== Registry ====================

    def track(
        self,
        element_id: str,
        signature: ElementSignature,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TrackedElement:
        """Register an element, or append a new capture to a known one"""
        tracked = self.elements.get(element_id)
        if tracked is None:
            tracked = TrackedElement(
                element_id=element_id,
                history=deque(maxlen=self.history_limit),
                metadata=dict(metadata or {}),
            )
            self.elements[element_id] = tracked
        elif metadata:
            tracked.metadata.update(metadata)

        tracked.history.append(signature)
        return tracked

    def append_signature(self, element_id: str, signature: ElementSignature):
        tracked = self.elements.get(element_id)
        if tracked is not None:
            tracked.history.append(signature)

    def get(self, element_id: str) -> Optional[TrackedElement]:
        return self.elements.get(element_id)

    def history(self, element_id: str) -> List[ElementSignature]:
        tracked = self.elements.get(element_id)
        return list(tracked.history) if tracked else []

    def forget(self, element_id: str) -> bool:
        tracked = self.elements.pop(element_id, None)
        if tracked is None:
            return False
        self.ledger.forget_element(element_id)
        return True

    def clear(self):
        self.elements.clear()
        self.ledger.clear()
        self.cache.clear()
        self._training_samples.clear()

    # ==================== Training Buffer ====================

    def add_training_sample(self, sample: TrainingSample) -> bool:
        """Buffer a sample; True once enough have been collected to retrain"""
        self._training_samples.append(sample)
        return len(self._training_samples) >= self.training_threshold

    def drain_training_samples(self) -> List[TrainingSample]:
        samples = list(self._training_samples)
        self._training_samples.clear()
        return samples

    @property
    def pending_training_samples(self) -> int:
        return len(self._training_samples)
