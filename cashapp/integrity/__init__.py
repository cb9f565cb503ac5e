"""ERP sync integrity guard."""

from .guard import IntegrityGuardEngine, compute_freshness, latest_runs_by_entity

__all__ = ["IntegrityGuardEngine", "compute_freshness", "latest_runs_by_entity"]
