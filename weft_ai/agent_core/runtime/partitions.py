from __future__ import annotations

"""Per-partition serial job execution.

``PartitionedExecutor`` keeps one asyncio queue and one worker task per
partition key (the project id). Jobs in a partition run one at a time in
submission order; different partitions run concurrently.

Each job runs as its own task, so ``cancel(job_key)`` can stop one plan
without killing the worker. Queued jobs for a cancelled key are skipped when
the worker reaches them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass(eq=False)
class _Job:
    key: str
    factory: JobFactory
    future: "asyncio.Future[Any]"
    cancelled: bool = False


class PartitionedExecutor:
    def __init__(self) -> None:
        self._queues: Dict[str, "asyncio.Queue[Optional[_Job]]"] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._queued: Dict[str, List[_Job]] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._closed = False

    def submit(self, partition: str, job_key: str, factory: JobFactory) -> "asyncio.Future[Any]":
        """
        Queue ``factory()`` on ``partition``.

        Returns:
            A future resolved with the job's result, its exception, or
            cancelled when the job is cancelled.
        """
        if self._closed:
            raise RuntimeError("executor is closed")
        job = _Job(key=job_key, factory=factory, future=asyncio.get_running_loop().create_future())
        self._queued.setdefault(job_key, []).append(job)
        self._queue_for(partition).put_nowait(job)
        logger.debug("Queued job %s on partition %s", job_key, partition)
        return job.future

    def is_active(self, job_key: str) -> bool:
        return job_key in self._running or bool(self._queued.get(job_key))

    def cancel(self, job_key: str) -> bool:
        """Cancel the running job and skip queued jobs for ``job_key``. Returns False if none exist."""
        found = False
        for job in self._queued.pop(job_key, []):
            job.cancelled = True
            found = True
        task = self._running.get(job_key)
        if task is not None and not task.done():
            task.cancel()
            found = True
        if found:
            logger.info("Cancelled job %s", job_key)
        return found

    async def drain(self) -> None:
        """Wait until every queued job has finished."""
        await asyncio.gather(*(q.join() for q in list(self._queues.values())))

    async def close(self) -> None:
        """Cancel running jobs and stop all workers."""
        self._closed = True
        for key in list(self._queued):
            self.cancel(key)
        for task in list(self._running.values()):
            task.cancel()
        for q in self._queues.values():
            q.put_nowait(None)
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()

    def _queue_for(self, partition: str) -> "asyncio.Queue[Optional[_Job]]":
        q = self._queues.get(partition)
        if q is None:
            q = asyncio.Queue()
            self._queues[partition] = q
            self._workers[partition] = asyncio.create_task(self._work(partition, q), name=f"partition:{partition}")
        return q

    def _dequeued(self, job: _Job) -> None:
        queued = self._queued.get(job.key)
        if queued is None:
            return
        if job in queued:
            queued.remove(job)
        if not queued:
            self._queued.pop(job.key, None)

    async def _work(self, partition: str, queue: "asyncio.Queue[Optional[_Job]]") -> None:
        while True:
            job = await queue.get()
            try:
                if job is None:
                    return
                self._dequeued(job)
                if job.cancelled:
                    job.future.cancel()
                    continue
                await self._run(job)
            finally:
                queue.task_done()

    async def _run(self, job: _Job) -> None:
        task = asyncio.create_task(job.factory(), name=f"job:{job.key}")
        self._running[job.key] = task
        try:
            await asyncio.wait({task})
        finally:
            if self._running.get(job.key) is task:
                del self._running[job.key]

        if job.future.done():
            return
        if task.cancelled():
            job.future.cancel()
        elif task.exception() is not None:
            logger.error("Job %s failed", job.key, exc_info=task.exception())
            job.future.set_exception(task.exception())
        else:
            job.future.set_result(task.result())
