"""
Reconciler API - the contract between the runtime and user reconciliation code.

The hot-reloadable unit is a Python module exposing::

    def reconcile(resource, ctx): ...          # or async def

``resource`` is a :class:`resources.ResourceObject`; ``ctx`` is a
:class:`ReconcileContext` carrying the log sink and the status update request.
The one-argument form ``reconcile(resource)`` is accepted as well.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from logstream import LogBroadcaster, LogLevel
from resources import ResourceObject, WatchEventType

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result a reconcile() call may return instead of None/True/False."""

    success: bool = False
    message: str = ""


class ReconcileError(Exception):
    """Raised by reconciliation code to signal that a resource failed to reconcile."""


class ReconcileContext:
    """
    Context handed to reconcile() for one event.

    Log lines go straight to the log broadcaster. A status update is only
    recorded here; the dispatcher applies it once reconcile() returns.
    """

    def __init__(
        self,
        event_type: WatchEventType,
        broadcaster: LogBroadcaster,
    ):
        self.event_type = event_type
        self._broadcaster = broadcaster
        self._requested_status: Optional[Dict[str, Any]] = None

    def log(self, message: Any, level: Optional[LogLevel] = None) -> None:
        """
        Emit a log line; the level is inferred from the message when omitted.

        Args:
            message: Anything; converted with str().
            level: Explicit level.
        """
        text = str(message)
        self._broadcaster.emit(level or LogLevel.detect(text), text)

    def info(self, message: Any) -> None:
        self.log(message, LogLevel.INFO)

    def warn(self, message: Any) -> None:
        self.log(message, LogLevel.WARN)

    def error(self, message: Any) -> None:
        self.log(message, LogLevel.ERROR)

    def success(self, message: Any) -> None:
        self.log(message, LogLevel.SUCCESS)

    def debug(self, message: Any) -> None:
        self.log(message, LogLevel.DEBUG)

    def separator(self) -> None:
        self._broadcaster.separator()

    def update_status(self, status: Dict[str, Any]) -> None:
        """
        Request that the resource's status be replaced with ``status``.

        Calling it again overrides the earlier request.
        """
        if not isinstance(status, dict):
            raise TypeError("status must be a dict")
        self._requested_status = copy.deepcopy(status)

    @property
    def requested_status(self) -> Optional[Dict[str, Any]]:
        return self._requested_status


class StatusWriter(ABC):
    """Applies status updates requested by reconciliation code."""

    @abstractmethod
    async def write_status(
        self, resource: ResourceObject, status: Dict[str, Any]
    ) -> None:
        """
        Persist ``status`` as the status of ``resource``.

        Args:
            resource: The reconciled resource.
            status: The full status requested by reconcile().
        """
        pass


class LoggingStatusWriter(StatusWriter):
    """Status writer used when no cluster is attached: reports the update only."""

    def __init__(self, broadcaster: LogBroadcaster):
        self._broadcaster = broadcaster

    async def write_status(
        self, resource: ResourceObject, status: Dict[str, Any]
    ) -> None:
        self._broadcaster.info(
            f"📊 Status would be updated to: {json.dumps(status, indent=2, default=str)}"
        )
        logger.debug(
            f"Status update for {resource.namespace}/{resource.name} not persisted"
        )
