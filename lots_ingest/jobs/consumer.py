"""Single consumer loop draining a BackgroundTaskQueue."""
from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable, ContextManager, TYPE_CHECKING

from lots_ingest.jobs.queue import BackgroundTaskQueue, DeferredJob, JobOutcome
from lots_ingest.utils import get_logger
from lots_ingest.utils.aio import sleep_or_stop
from lots_ingest.utils.time import utc_now

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)


class QueueConsumer:
    """Runs jobs one at a time, FIFO, each inside a freshly opened scope.

    ``scope_factory`` returns a context manager yielding a ``JobScope``; the
    database session inside it is never shared between jobs. Exceptions are
    logged and the job is discarded. ``delay_between_jobs`` paces a
    downstream service; ``skip_pause`` is applied after a job reports
    ``JobOutcome.SKIPPED`` (dependency known to be down).
    """

    def __init__(
        self,
        queue: BackgroundTaskQueue,
        scope_factory: Callable[[], ContextManager["JobScope"]],
        *,
        delay_between_jobs: float = 0.0,
        skip_pause: float = 0.0,
    ) -> None:
        self.queue = queue
        self.scope_factory = scope_factory
        self.delay_between_jobs = delay_between_jobs
        self.skip_pause = skip_pause
        self.processed = 0
        self.failed = 0
        # Debug instrumentation store (test visibility)
        self.last_errors: deque[dict] = deque(maxlen=20)

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Queue consumer started", queue=self.queue.name)
        while not stop_event.is_set():
            job = await self.queue.dequeue(stop_event)
            if job is None:
                break
            outcome = await self.process(job, stop_event)
            pause = self.delay_between_jobs
            if outcome is JobOutcome.SKIPPED:
                pause = max(pause, self.skip_pause)
            if pause > 0 and await sleep_or_stop(stop_event, pause):
                break
        logger.info("Queue consumer stopped", queue=self.queue.name, processed=self.processed, failed=self.failed)

    async def process(self, job: DeferredJob, stop_event: asyncio.Event) -> JobOutcome | None:
        start = time.perf_counter()
        try:
            with self.scope_factory() as scope:
                result = await job.run(scope, stop_event)
        except Exception as e:
            self.failed += 1
            self.last_errors.append({
                "job": job.name,
                "job_id": job.job_id,
                "error": str(e),
                "type": type(e).__name__,
                "at": utc_now().isoformat(),
            })
            logger.error(
                "Deferred job failed",
                queue=self.queue.name,
                job=job.name,
                job_id=job.job_id,
                error=str(e),
                exc_info=True,
                **job.context,
            )
            return JobOutcome.FAILURE
        self.processed += 1
        logger.debug(
            "Deferred job finished",
            queue=self.queue.name,
            job=job.name,
            job_id=job.job_id,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return result if isinstance(result, JobOutcome) else JobOutcome.SUCCESS

    def snapshot(self) -> dict:
        return {
            **self.queue.snapshot(),
            "processed": self.processed,
            "failed": self.failed,
            "last_errors": list(self.last_errors)[-5:],
        }


__all__ = ["QueueConsumer"]
