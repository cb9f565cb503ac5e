"""Settlement finality tracking."""

from .tracker import SettlementTracker

__all__ = ["SettlementTracker"]
