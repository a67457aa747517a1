"""
In-process event stream for newly submitted reports.

Subscribers (one per WebSocket connection) register an asyncio queue for the
lifetime of an ``async with broker.subscribe()`` block. Publishing is
thread-safe and never blocks: a slow subscriber loses its oldest events.
"""
import asyncio
import itertools
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Tuple

from core.logger import logger

NEW_REPORT_ALERT_TITLE = "New Report Submitted"
ALERT_PREVIEW_LENGTH = 50


class ReportEventBroker:
    """Fan-out of report events to subscribed queues."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[int, Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue]:
        """Register a queue for the duration of the block."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        subscriber_id = next(self._ids)
        with self._lock:
            self._subscribers[subscriber_id] = (loop, queue)
        logger.debug(f"Report feed subscriber {subscriber_id} registered")
        try:
            yield queue
        finally:
            with self._lock:
                self._subscribers.pop(subscriber_id, None)
            logger.debug(f"Report feed subscriber {subscriber_id} removed")

    def publish(self, event: Dict[str, Any]) -> int:
        """
        Deliver ``event`` to every subscriber.

        Returns:
            Number of subscribers the event was scheduled for
        """
        with self._lock:
            subscribers = list(self._subscribers.values())
        delivered = 0
        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(self._deliver, queue, event)
            except RuntimeError:
                # Subscriber's loop already closed; its block will unregister it
                continue
            delivered += 1
        return delivered

    @staticmethod
    def _deliver(queue: asyncio.Queue, event: Dict[str, Any]) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(event)


def new_report_event(report: Dict[str, Any]) -> Dict[str, Any]:
    """Event published after a report is created; ``report`` is already masked."""
    description = report.get("description") or ""
    preview = description[:ALERT_PREVIEW_LENGTH]
    if len(description) > ALERT_PREVIEW_LENGTH:
        preview += "..."
    return {
        "type": "report_created",
        "report": report,
        "alert": {
            "title": NEW_REPORT_ALERT_TITLE,
            "message": f"{report.get('subCategory')}: {preview}",
        },
    }


def merge_feed(existing: List[Dict[str, Any]], incoming: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Put ``incoming`` at the head of a newest-first list, dropping any entry
    with the same id. Safe when a live event races the initial fetch.
    """
    return [incoming] + [item for item in existing if item.get("id") != incoming.get("id")]


# Process-wide broker used by the reports router
report_events = ReportEventBroker()
