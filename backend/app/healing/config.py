"""
Healing Configuration

Tunable settings for the self-healing engine. Values can be supplied
directly or read from HEALING_* environment variables (a .env file is
loaded by the server entry point).
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Mapping

# Configure logging
logger = logging.getLogger(__name__)


ENV_PREFIX = "HEALING_"


@dataclass
class HealingConfig:
    """Configuration for the healing service"""
    similarity_threshold: float = 0.7
    max_healing_attempts: int = 5
    cache_timeout_ms: int = 300000  # 0 disables the candidate cache
    # Per-selector probe timeout used by the orchestrator
    selector_timeout_ms: int = 2000
    # Bounded state
    history_limit: int = 10
    audit_trail_limit: int = 1000
    ledger_limit: int = 5000
    # Retrain the candidate scorer after this many recorded samples
    training_threshold: int = 100
    enable_predictive: bool = True

    def __post_init__(self):
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be in [0, 1], got {self.similarity_threshold}"
            )
        if self.max_healing_attempts < 1:
            raise ValueError(
                f"max_healing_attempts must be >= 1, got {self.max_healing_attempts}"
            )
        if self.cache_timeout_ms < 0:
            raise ValueError(f"cache_timeout_ms must be >= 0, got {self.cache_timeout_ms}")
        if self.selector_timeout_ms <= 0:
            raise ValueError(f"selector_timeout_ms must be > 0, got {self.selector_timeout_ms}")
        for name in ("history_limit", "audit_trail_limit", "ledger_limit", "training_threshold"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HealingConfig":
        """
        Build a config from HEALING_* environment variables.

        Unset variables keep their defaults.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated HealingConfig
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        for name, field_type in (
            ("similarity_threshold", float),
            ("max_healing_attempts", int),
            ("cache_timeout_ms", int),
            ("selector_timeout_ms", int),
            ("history_limit", int),
            ("audit_trail_limit", int),
            ("ledger_limit", int),
            ("training_threshold", int),
        ):
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                kwargs[name] = field_type(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}")

        raw_predictive = env.get(f"{ENV_PREFIX}ENABLE_PREDICTIVE")
        if raw_predictive:
            kwargs["enable_predictive"] = raw_predictive.strip().lower() in ("1", "true", "yes", "on")

        config = cls(**kwargs)
        logger.debug(f"Loaded healing config: {config}")
        return config
