import asyncio
from contextlib import contextmanager

from lots_ingest.jobs.consumer import QueueConsumer
from lots_ingest.jobs.queue import BackgroundTaskQueue, DeferredJob, JobOutcome


def _scope_factory(opened):
    @contextmanager
    def _open():
        scope = object()
        opened.append(scope)
        yield scope
    return _open


def test_consumer_runs_jobs_fifo_with_fresh_scope_and_survives_errors():
    seen = []
    opened = []

    async def scenario():
        queue = BackgroundTaskQueue("test")
        consumer = QueueConsumer(queue, _scope_factory(opened))
        stop = asyncio.Event()

        def make(n, *, fail=False, last=False):
            async def run(scope, stop_event):
                seen.append((n, scope))
                if fail:
                    raise RuntimeError("boom")
                if last:
                    stop_event.set()
            return DeferredJob(name=f"job{n}", run=run)

        for job in (make(1), make(2, fail=True), make(3, last=True)):
            queue.enqueue(job)
        await asyncio.wait_for(consumer.run(stop), timeout=5)
        return consumer

    consumer = asyncio.run(scenario())
    assert [n for n, _ in seen] == [1, 2, 3]
    assert len({id(s) for _, s in seen}) == 3
    assert [id(s) for _, s in seen] == [id(s) for s in opened]
    assert consumer.processed == 2
    assert consumer.failed == 1
    assert consumer.last_errors[0]["job"] == "job2"
    assert consumer.snapshot()["depth"] == 0


def test_process_reports_job_outcome():
    consumer = QueueConsumer(BackgroundTaskQueue("test"), _scope_factory([]))

    async def skipped(scope, stop_event):
        return JobOutcome.SKIPPED

    async def plain(scope, stop_event):
        return None

    async def scenario():
        stop = asyncio.Event()
        return (
            await consumer.process(DeferredJob(name="s", run=skipped), stop),
            await consumer.process(DeferredJob(name="p", run=plain), stop),
        )

    assert asyncio.run(scenario()) == (JobOutcome.SKIPPED, JobOutcome.SUCCESS)


def test_dequeue_waits_for_work_and_honours_stop():
    async def noop(scope, stop_event):
        return None

    async def scenario():
        queue = BackgroundTaskQueue("test")
        stop = asyncio.Event()
        job = DeferredJob(name="later", run=noop)
        waiter = asyncio.create_task(queue.dequeue(stop))
        await asyncio.sleep(0.01)
        assert not waiter.done()
        queue.enqueue(job)
        got = await asyncio.wait_for(waiter, timeout=2)

        queue.enqueue(DeferredJob(name="never", run=noop))
        stop.set()
        after_stop = await queue.dequeue(stop)
        return got, job, after_stop, queue.depth()

    got, job, after_stop, depth = asyncio.run(scenario())
    assert got is job
    assert after_stop is None
    assert depth == 1
