"""Progress channel: subscriber callbacks plus an async event stream."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, List, Optional

from skinscan.types import AnalysisProgress, AnalysisStage

LOGGER = logging.getLogger("skinscan.pipeline.progress")

ProgressCallback = Callable[[AnalysisProgress], None]

_CLOSED = object()


class ProgressChannel:
    """Fan-out of AnalysisProgress events for one orchestration run.

    Within a stage, progress never decreases; a lower value is raised to the
    previous one. Progress resets when the stage changes. Subscribers are
    called synchronously in publish order, and ``async for`` consumers receive
    every event until the channel is closed.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._subscribers: List[ProgressCallback] = []
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._latest: Optional[AnalysisProgress] = None
        self._closed = False
        self.history: List[AnalysisProgress] = []

    @property
    def latest(self) -> Optional[AnalysisProgress]:
        return self._latest

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register ``callback``; the returned function unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, stage: AnalysisStage, progress: float, message: str = "") -> AnalysisProgress:
        if self._closed:
            raise RuntimeError("Progress channel is closed")
        value = max(0.0, min(100.0, float(progress)))
        previous = self._latest
        if previous is not None and previous.stage is stage and value < previous.progress:
            value = previous.progress
        event = AnalysisProgress(stage=stage, progress=value, message=message, timestamp=self._clock())
        self._latest = event
        self.history.append(event)
        self._queue.put_nowait(event)
        LOGGER.debug("Progress %s %.1f %s", stage.value, value, message)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Progress subscriber %r failed", callback)
        return event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[AnalysisProgress]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                # Leave the sentinel for any other consumer.
                self._queue.put_nowait(_CLOSED)
                return
            yield item
