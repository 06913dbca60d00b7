"""
Healing error taxonomy.

Only ProbeUnavailable escapes a healing run; the other errors are raised
by probes or the gate and recovered per candidate.
"""


class HealingError(Exception):
    """Base class for all healing errors"""


class ProbeUnavailable(HealingError):
    """The browser page/session behind a probe is gone"""


class CandidateInvalid(HealingError):
    """A selector could not be evaluated (syntax error, unsupported engine)"""

    def __init__(self, selector: str, reason: str = ""):
        self.selector = selector
        self.reason = reason
        message = f"Invalid selector {selector!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class SimilarityBelowThreshold(HealingError):
    """A located element did not look enough like the remembered one"""

    def __init__(self, selector: str, similarity: float, threshold: float):
        self.selector = selector
        self.similarity = similarity
        self.threshold = threshold
        super().__init__(
            f"Similarity {similarity:.3f} below threshold {threshold:.3f} for {selector!r}"
        )


class HealingTimeout(HealingError):
    """A probe or scenario attempt exceeded its time budget"""

    def __init__(self, operation: str, timeout_ms: int):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"{operation} timed out after {timeout_ms}ms")


class ElementNotRegistered(HealingError):
    """Lookup of an element id the service is not tracking"""

    def __init__(self, element_id: str):
        self.element_id = element_id
        super().__init__(f"Element not registered: {element_id}")


class SelectorNotMatched(HealingError):
    """A selector given for registration matched no element"""

    def __init__(self, selector: str):
        self.selector = selector
        super().__init__(f"No element matches {selector!r}")
