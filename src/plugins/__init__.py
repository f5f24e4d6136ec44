"""
Plugin system for the hot reconciler.

This package provides the input plugin architecture and the API that
reconciliation code is written against.
"""

from plugins.reconcilers.base import (
    LoggingStatusWriter,
    ReconcileContext,
    ReconcileError,
    ReconcileResult,
    StatusWriter,
)
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "LoggingStatusWriter",
    "ReconcileContext",
    "ReconcileError",
    "ReconcileResult",
    "StatusWriter",
    "PluginRegistry",
    "get_registry",
]
