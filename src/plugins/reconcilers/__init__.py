"""
Reconciler API package.

Reconciliation code loaded at runtime imports its helper types from here.
"""

from plugins.reconcilers.base import (
    LoggingStatusWriter,
    ReconcileContext,
    ReconcileError,
    ReconcileResult,
    StatusWriter,
)

__all__ = [
    "LoggingStatusWriter",
    "ReconcileContext",
    "ReconcileError",
    "ReconcileResult",
    "StatusWriter",
]
