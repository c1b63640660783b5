"""Best-effort event sink for scan telemetry.

publish() never blocks and never raises; a full queue drops the event.
Handler errors are caught inside the worker so they cannot reach a request.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("webwatcher.events")

EventHandler = Callable[[dict], Awaitable[None]]


async def log_event(event: dict) -> None:
    event_logger.info(json.dumps(event, sort_keys=True, default=str))


class EventSink:
    """Queue plus a single background worker."""

    def __init__(self, handler: EventHandler = log_event, max_queue: int = 1000, enabled: bool = True):
        self.handler = handler
        self.enabled = enabled
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0
        self.failed = 0

    async def start(self) -> None:
        if not self.enabled or self._worker is not None:
            return
        self._worker = asyncio.create_task(self._run(), name="event-sink")

    async def stop(self) -> None:
        """Drain what is queued, then stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Event sink stopped with %d undelivered events", self._queue.qsize())
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None

    def publish(self, event_type: str, payload: dict) -> bool:
        if not self.enabled:
            return False
        try:
            self._queue.put_nowait({"type": event_type, **payload})
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Event sink full; dropped %s", event_type)
            return False
        return True

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.handler(event)
            except Exception as exc:
                self.failed += 1
                logger.warning("Event handler failed for %s: %s", event.get("type"), exc)
            finally:
                self._queue.task_done()
