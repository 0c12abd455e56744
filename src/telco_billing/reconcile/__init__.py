"""Staging to production reconciliation."""

from .merge import MergeResult, ReconcileRunResult, Reconciler

__all__ = [
    "MergeResult",
    "ReconcileRunResult",
    "Reconciler",
]
