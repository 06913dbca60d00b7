"""Browser adapters"""

from .playwright_probe import PlaywrightProbe, PlaywrightSession

__all__ = ["PlaywrightProbe", "PlaywrightSession"]
