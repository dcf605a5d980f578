"""In-process FIFO queue for deferred side-effect work.

A ``DeferredJob`` is an async callable taking the job's dependency scope and
the process stop event. Producers (scrape workers, API endpoints, the
recovery loop) call ``enqueue`` from the event loop thread; exactly one
``QueueConsumer`` drains each queue.

Features:
- Unbounded; a warning is logged once depth crosses QUEUE_SETTINGS warn_depth.
- ``dequeue`` waits for either an item or the stop event. Once stop is set no
  further job is handed out, even if items remain.
- No retry: a job that raises is logged and dropped by the consumer.
"""
from __future__ import annotations

import asyncio
import enum
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from lots_ingest.config import QUEUE_SETTINGS
from lots_ingest.utils import get_logger
from lots_ingest.utils.time import utc_now

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)

JobCallable = Callable[["JobScope", asyncio.Event], Awaitable[Any]]

_job_ids = itertools.count(1)


class JobOutcome(str, enum.Enum):
    """What a job may report back to its consumer."""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    SKIPPED = "SKIPPED"


@dataclass(slots=True)
class DeferredJob:
    name: str
    run: JobCallable
    context: dict[str, Any] = field(default_factory=dict)
    job_id: int = field(default_factory=lambda: next(_job_ids))
    enqueued_at: Any = field(default_factory=utc_now)


class BackgroundTaskQueue:
    def __init__(self, name: str) -> None:
        self.name = name
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))
        self._items: deque[DeferredJob] = deque()
        self._signal = asyncio.Event()
        self._enqueued_total = 0
        self._dequeued_total = 0

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: DeferredJob) -> DeferredJob:
        self._items.append(job)
        self._enqueued_total += 1
        self._signal.set()
        if len(self._items) >= self._warn_depth:
            logger.warning("Queue depth warning", queue=self.name, depth=len(self._items))
        logger.debug("Job enqueued", queue=self.name, job=job.name, job_id=job.job_id, **job.context)
        return job

    async def dequeue(self, stop_event: Optional[asyncio.Event] = None) -> DeferredJob | None:
        """Return the oldest job, waiting for one; None once ``stop_event`` is set."""
        while True:
            if stop_event is not None and stop_event.is_set():
                return None
            if self._items:
                self._dequeued_total += 1
                return self._items.popleft()
            self._signal.clear()
            waiters = [asyncio.ensure_future(self._signal.wait())]
            if stop_event is not None:
                waiters.append(asyncio.ensure_future(stop_event.wait()))
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for w in waiters:
                    if not w.done():
                        w.cancel()

    # ----------------------------- test utilities ----------------------------- #
    def purge(self) -> int:
        """Drop every queued job. Intended for test isolation."""
        dropped = len(self._items)
        self._items.clear()
        return dropped

    # ----------------------------- inspection ----------------------------- #
    def depth(self) -> int:
        return len(self._items)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        return {
            "name": self.name,
            "depth": len(self._items),
            "enqueued_total": self._enqueued_total,
            "dequeued_total": self._dequeued_total,
            "oldest_job": self._items[0].name if self._items else None,
        }


__all__ = ["BackgroundTaskQueue", "DeferredJob", "JobCallable", "JobOutcome"]
