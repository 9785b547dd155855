"""
Interval timer event generator.

Publishes one event type through an EventQueue every ``interval_seconds``
while started. Publish failures are logged and the timer keeps running.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable

from interventions_core.contracts.event import utcnow
from interventions_core.events.queue import EventQueue
from interventions_core.utils import maybe_await

logger = logging.getLogger(__name__)

DetailsFactory = Callable[[], dict[str, Any] | Awaitable[dict[str, Any]]]


class IntervalTimerEventGenerator:
    """Periodic publisher for clock-driven event types."""

    def __init__(
        self,
        queue: EventQueue,
        event_type: str,
        interval_seconds: float,
        generate_details: DetailsFactory | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.queue = queue
        self.event_type = event_type
        self.interval_seconds = interval_seconds
        self.generate_details = generate_details
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"interval-timer:{self.event_type}")
        logger.info(
            f"Started interval timer for '{self.event_type}' every {self.interval_seconds}s"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(f"Stopped interval timer for '{self.event_type}'")

    async def tick(self) -> None:
        """Publish one event now."""
        details = {}
        if self.generate_details is not None:
            details = await maybe_await(self.generate_details())
        await self.queue.publish_event(self.event_type, utcnow(), details)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception as e:
                logger.error(
                    f"Interval timer failed to publish '{self.event_type}': {e}",
                    extra={"event_type": self.event_type},
                    exc_info=True,
                )
