"""Utility modules."""

from .audit_logger import ActivityLogger

__all__ = ["ActivityLogger"]
