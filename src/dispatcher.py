"""
Event Dispatcher - serialized reconciliation of resource events.

Events from any number of watch sources are queued and handled one at a time,
in arrival order. Each event loads the current reconciliation source afresh
and runs its ``reconcile`` entry point. Nothing raised by reconciliation code
stops the dispatcher.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from loader import LoadError, ReconciliationLoader
from logstream import LogBroadcaster
from plugins.reconcilers.base import (
    LoggingStatusWriter,
    ReconcileContext,
    ReconcileError,
    ReconcileResult,
    StatusWriter,
)
from resources import ResourceEvent

logger = logging.getLogger(__name__)


class DispatcherState(Enum):
    """Dispatcher states."""

    IDLE = "idle"
    DISPATCHING = "dispatching"


class DispatchStatus(Enum):
    """How the handling of one event ended."""

    SUCCEEDED = "succeeded"
    RECONCILE_FAILED = "reconcile_failed"
    FAULT = "fault"
    LOAD_FAILED = "load_failed"


@dataclass
class DispatchOutcome:
    """Result of dispatching one event."""

    status: DispatchStatus
    resource_key: str
    event_type: str
    message: str = ""
    status_written: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is DispatchStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "resource": self.resource_key,
            "event_type": self.event_type,
            "message": self.message,
            "status_written": self.status_written,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def _interpret_result(result: Any) -> Optional[str]:
    """
    Map a reconcile() return value to a failure message, or None on success.

    None, True and a successful ReconcileResult mean success; False and an
    unsuccessful ReconcileResult mean failure.
    """
    if isinstance(result, ReconcileResult):
        if result.success:
            return None
        return result.message or "Reconciliation reported failure"
    if result is False:
        return "Reconciliation reported failure"
    return None


class EventDispatcher:
    """
    Dispatches resource events to the hot-reloadable reconciler.

    Lifecycle per event is IDLE -> DISPATCHING -> IDLE. A single worker
    drains the queue, so at most one reconcile() call is ever in flight.
    """

    def __init__(
        self,
        loader: ReconciliationLoader,
        broadcaster: LogBroadcaster,
        status_writer: Optional[StatusWriter] = None,
        queue_size: int = 0,
    ):
        self.loader = loader
        self.broadcaster = broadcaster
        self.status_writer = status_writer or LoggingStatusWriter(broadcaster)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._dispatch_lock = asyncio.Lock()
        self._state = DispatcherState.IDLE
        self.running = False
        self.processed = 0
        self.failed = 0
        self.last_outcome: Optional[DispatchOutcome] = None

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    async def submit(self, event: ResourceEvent) -> int:
        """
        Queue an event for dispatch.

        Safe to call from any number of concurrent producers; events are
        handled in the order they were queued.

        Returns:
            Number of events waiting after this one was queued.
        """
        await self._queue.put(event)
        logger.debug(f"Queued {event.event_type.value} event for {event.key}")
        return self._queue.qsize()

    async def start(self) -> None:
        """Run the dispatch worker until stop() is called."""
        logger.info("Starting event dispatcher")
        self.running = True
        while self.running:
            event = await self._queue.get()
            try:
                if event is None:
                    continue
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Error in dispatch loop: {e}", exc_info=True)
            finally:
                self._queue.task_done()
        logger.info("Event dispatcher stopped")

    async def stop(self) -> None:
        """
        Stop the worker after the in-flight event, if any, completes.

        Events still queued are not dispatched.
        """
        logger.info("Stopping event dispatcher")
        self.running = False
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def join(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self._queue.join()

    async def dispatch(self, event: ResourceEvent) -> DispatchOutcome:
        """
        Handle one event: load the reconciler, invoke it, report the outcome.

        Never raises for failures originating in reconciliation code.
        """
        async with self._dispatch_lock:
            self._state = DispatcherState.DISPATCHING
            start_time = time.monotonic()
            try:
                outcome = await self._dispatch(event)
            finally:
                self._state = DispatcherState.IDLE
            outcome.duration_seconds = time.monotonic() - start_time

            self.processed += 1
            if not outcome.success:
                self.failed += 1
            self.last_outcome = outcome
            return outcome

    async def _dispatch(self, event: ResourceEvent) -> DispatchOutcome:
        resource = event.resource
        key = event.key
        event_type = event.event_type.value

        self.broadcaster.info(f"Event {event_type} for {key}")
        logger.info(f"Dispatching {event_type} event for {key}")

        try:
            # Module bodies may block, so load off the event loop
            reconciler = await asyncio.to_thread(self.loader.load)
        except LoadError as e:
            # The loader already published the error record.
            logger.error(f"Reconciliation of {key} skipped: {e}")
            return DispatchOutcome(DispatchStatus.LOAD_FAILED, key, event_type, str(e))

        ctx = ReconcileContext(event.event_type, self.broadcaster)
        try:
            result = await reconciler.invoke(resource, ctx)
            failure = _interpret_result(result)
        except ReconcileError as e:
            failure = str(e) or "Reconciliation reported failure"
        except asyncio.CancelledError:
            raise
        except BaseException as e:
            logger.error(f"Reconciler raised for {key}: {e}", exc_info=True)
            message = f"{type(e).__name__}: {e}"
            self.broadcaster.error(f"Failed to reconcile {key}: {message}")
            return DispatchOutcome(DispatchStatus.FAULT, key, event_type, message)

        status_written = False
        if ctx.requested_status is not None:
            try:
                await self.status_writer.write_status(resource, ctx.requested_status)
                status_written = True
            except Exception as e:
                logger.error(f"Status update failed for {key}: {e}", exc_info=True)
                message = f"Status update failed: {e}"
                self.broadcaster.error(f"Failed to reconcile {key}: {message}")
                return DispatchOutcome(DispatchStatus.FAULT, key, event_type, message)

        if failure is not None:
            logger.warning(f"Reconciliation failed for {key}: {failure}")
            self.broadcaster.error(f"Reconciliation failed for {key}: {failure}")
            return DispatchOutcome(
                DispatchStatus.RECONCILE_FAILED,
                key,
                event_type,
                failure,
                status_written=status_written,
            )

        logger.info(f"Reconciled {key}")
        self.broadcaster.success(f"Reconciled {key}")
        return DispatchOutcome(
            DispatchStatus.SUCCEEDED, key, event_type, status_written=status_written
        )
