"""
Log Streaming - In-memory fan-out of reconciliation log records.

Records produced while loading and running the reconciliation unit are
published to every live subscriber (e.g. an open ``/api/logs`` stream).
Publishing never blocks: records for a subscriber whose queue is full are
dropped for that subscriber only.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)

SEPARATOR_LINE = "━" * 40


class LogLevel(Enum):
    """Severity of a log record, as shown by log viewers."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"
    DEBUG = "debug"
    SEPARATOR = "separator"

    @property
    def marker(self) -> str:
        return _MARKERS[self]

    @classmethod
    def detect(cls, message: str) -> "LogLevel":
        """
        Classify a free-form message by its wording and markers.

        Args:
            message: The log message.

        Returns:
            The inferred level; INFO when nothing matches.
        """
        lowered = message.lower()
        if "error" in lowered or "❌" in message or "failed" in lowered:
            return cls.ERROR
        if "success" in lowered or "✅" in message or "complete" in lowered:
            return cls.SUCCESS
        if "warn" in lowered or "⚠️" in message:
            return cls.WARN
        if "debug" in lowered:
            return cls.DEBUG
        if message.startswith("━━━"):
            return cls.SEPARATOR
        return cls.INFO


_MARKERS = {
    LogLevel.INFO: "ℹ️",
    LogLevel.WARN: "⚠️",
    LogLevel.ERROR: "❌",
    LogLevel.SUCCESS: "✅",
    LogLevel.DEBUG: "🔍",
    LogLevel.SEPARATOR: "",
}


@dataclass(frozen=True)
class LogRecord:
    """A single line of reconciliation output."""

    level: LogLevel
    message: str
    timestamp: str

    @classmethod
    def create(cls, level: LogLevel, message: str) -> "LogRecord":
        """Create a record stamped with the current UTC time."""
        return cls(
            level=level,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )

    def to_line(self) -> str:
        """
        Render the record as one human-readable line.

        Separator records are rendered bare. Messages that already carry
        their level's marker are not prefixed twice.
        """
        if self.level is LogLevel.SEPARATOR:
            return self.message or SEPARATOR_LINE
        marker = self.level.marker
        if self.message.startswith(marker):
            return self.message
        return f"{marker} {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
        }

    def to_sse(self) -> str:
        """
        Format the record as an SSE message on the ``log`` channel.

        Multi-line messages become multiple ``data:`` lines, which SSE
        clients join back with newlines.
        """
        data = "\n".join(f"data: {line}" for line in self.to_line().split("\n"))
        return f"event: log\n{data}\n\n"


class LogSubscription:
    """
    Handle for one log subscriber.

    Iterate it asynchronously to receive records. Closing the handle (or
    leaving its ``async with`` block) deregisters the subscriber and ends
    iteration.
    """

    def __init__(
        self,
        broadcaster: "LogBroadcaster",
        subscriber_id: str,
        queue: asyncio.Queue,
    ):
        self._broadcaster = broadcaster
        self.subscriber_id = subscriber_id
        self._queue = queue
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Deregister this subscriber. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._broadcaster.unsubscribe(self.subscriber_id)

    def __aiter__(self) -> AsyncIterator[LogRecord]:
        return self

    async def __anext__(self) -> LogRecord:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        record = await self._queue.get()
        if record is None:
            raise StopAsyncIteration
        return record

    async def __aenter__(self) -> "LogSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class _Subscriber:
    __slots__ = ("queue", "loop")

    def __init__(self, queue: asyncio.Queue, loop: asyncio.AbstractEventLoop):
        self.queue = queue
        self.loop = loop


class LogBroadcaster:
    """
    In-memory pub/sub for log records.

    Maintains an ``asyncio.Queue`` per subscriber. ``publish`` may be called
    from the event loop or from worker threads; deliveries to a loop owned by
    another thread are scheduled with ``call_soon_threadsafe``.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, _Subscriber] = {}
        self._lock = threading.Lock()
        self.dropped = 0

    def publish(self, record: LogRecord) -> None:
        """
        Publish a record to all current subscribers (non-blocking).

        Records are dropped for subscribers whose queues are full.

        Args:
            record: The record to publish.
        """
        with self._lock:
            subscribers = list(self._subscribers.items())

        if not subscribers:
            return

        try:
            running_loop: Optional[asyncio.AbstractEventLoop] = (
                asyncio.get_running_loop()
            )
        except RuntimeError:
            running_loop = None

        for subscriber_id, subscriber in subscribers:
            if subscriber.loop is running_loop:
                self._deliver(subscriber_id, subscriber.queue, record)
                continue
            try:
                subscriber.loop.call_soon_threadsafe(
                    self._deliver, subscriber_id, subscriber.queue, record
                )
            except RuntimeError:
                # Subscriber's loop is closed; it will never read again.
                self.unsubscribe(subscriber_id)

    def _deliver(
        self, subscriber_id: str, queue: asyncio.Queue, record: LogRecord
    ) -> None:
        with self._lock:
            if subscriber_id not in self._subscribers:
                return
        try:
            queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Dropped log record for subscriber {subscriber_id}: queue full"
            )

    def emit(self, level: LogLevel, message: str) -> LogRecord:
        """Create and publish a record; returns it."""
        record = LogRecord.create(level, message)
        self.publish(record)
        return record

    def info(self, message: str) -> LogRecord:
        return self.emit(LogLevel.INFO, message)

    def warn(self, message: str) -> LogRecord:
        return self.emit(LogLevel.WARN, message)

    def error(self, message: str) -> LogRecord:
        return self.emit(LogLevel.ERROR, message)

    def success(self, message: str) -> LogRecord:
        return self.emit(LogLevel.SUCCESS, message)

    def debug(self, message: str) -> LogRecord:
        return self.emit(LogLevel.DEBUG, message)

    def separator(self) -> LogRecord:
        return self.emit(LogLevel.SEPARATOR, SEPARATOR_LINE)

    def subscribe(self) -> LogSubscription:
        """
        Register a new subscriber on the running event loop.

        Returns:
            A LogSubscription receiving records published from now on.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        loop = asyncio.get_running_loop()
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        with self._lock:
            self._subscribers[subscriber_id] = _Subscriber(queue, loop)

        logger.info(f"New log subscriber: {subscriber_id}")
        return LogSubscription(self, subscriber_id, queue)

    def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber and wake its iterator.

        Args:
            subscriber_id: The ID of the subscription to remove.
        """
        with self._lock:
            subscriber = self._subscribers.pop(subscriber_id, None)

        if subscriber is None:
            return

        def _wake():
            try:
                subscriber.queue.put_nowait(None)
            except asyncio.QueueFull:
                # Make room for the sentinel; the subscriber is going away.
                subscriber.queue.get_nowait()
                subscriber.queue.put_nowait(None)

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if subscriber.loop is running_loop:
            _wake()
        elif not subscriber.loop.is_closed():
            subscriber.loop.call_soon_threadsafe(_wake)
        logger.info(f"Log subscriber removed: {subscriber_id}")

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        with self._lock:
            return len(self._subscribers)
