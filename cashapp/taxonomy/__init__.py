"""Two-level exception taxonomy (core type / reason code)."""

from .signals import ExceptionSignal, SignalKind, collect_signals, derive_settlement_state
from .resolver import (
    EXCEPTION_REASON_LABELS,
    EXCEPTION_REASON_TO_CORE,
    ExceptionTaxonomyResolver,
    TaxonomyResolution,
    classify_signals,
    reason_label,
    resolve_exception_taxonomy,
)

__all__ = [
    "EXCEPTION_REASON_LABELS",
    "EXCEPTION_REASON_TO_CORE",
    "ExceptionSignal",
    "ExceptionTaxonomyResolver",
    "SignalKind",
    "TaxonomyResolution",
    "classify_signals",
    "collect_signals",
    "derive_settlement_state",
    "reason_label",
    "resolve_exception_taxonomy",
]
