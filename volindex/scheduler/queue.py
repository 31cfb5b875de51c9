"""Concurrency-bounded, keyed job queue."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from volindex.scheduler.cancel import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class ScanJob:
    """A unit of work identified by ``key``; at most one per key is active."""

    key: str
    run: Callable[[], Awaitable[object]]
    token: CancelToken = field(default_factory=CancelToken)
    label: str = ""

    def cancel(self) -> None:
        self.token.cancel()


@dataclass
class QueueCounts:
    running: int
    queued: int


class ScanQueue:
    """FIFO job runner with a fixed number of slots and per-key dedup.

    A cancelled job keeps its slot until its coroutine returns. A new job
    for the same key may be queued meanwhile, but it does not start until
    the cancelled one has finished.
    """

    def __init__(self, concurrency: int = 4, name: str = "scan"):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.name = name
        self._queue: deque[ScanJob] = deque()
        self._running: dict[str, ScanJob] = {}
        self._draining: dict[str, ScanJob] = {}
        self._tasks: dict[int, asyncio.Task] = {}

    def enqueue(self, job: ScanJob) -> bool:
        """Queue a job unless one with the same key is queued or running."""
        if job.key in self._running or any(j.key == job.key for j in self._queue):
            logger.debug("[%s] %s already active, ignoring enqueue", self.name, job.key)
            return False
        self._queue.append(job)
        self._pump()
        return True

    def cancel(self, key: str) -> bool:
        cancelled = False
        job = self._running.pop(key, None)
        if job is not None:
            job.cancel()
            self._draining[key] = job
            cancelled = True

        before = len(self._queue)
        self._queue = deque(j for j in self._queue if j.key != key)
        return cancelled or len(self._queue) != before

    def cancel_all(self) -> None:
        for key in list(self._running):
            self.cancel(key)
        self._queue.clear()

    def cancel_current(self) -> str | None:
        """Cancel one running job and return its key, or None if idle."""
        for key in self._running:
            self.cancel(key)
            return key
        return None

    def counts(self) -> QueueCounts:
        return QueueCounts(running=len(self._running), queued=len(self._queue))

    def queued_keys(self) -> list[str]:
        return [job.key for job in self._queue]

    def is_active(self, key: str) -> bool:
        return key in self._running or any(j.key == key for j in self._queue)

    async def join(self) -> None:
        """Wait until nothing is queued, running or draining."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _pump(self) -> None:
        while len(self._running) + len(self._draining) < self.concurrency:
            job = self._next_startable()
            if job is None:
                return
            self._start(job)

    def _next_startable(self) -> ScanJob | None:
        for job in self._queue:
            if job.key not in self._draining:
                self._queue.remove(job)
                return job
        return None

    def _start(self, job: ScanJob) -> None:
        self._running[job.key] = job
        task = asyncio.get_running_loop().create_task(
            self._run_job(job), name=f"{self.name}:{job.key}"
        )
        self._tasks[id(task)] = task
        task.add_done_callback(lambda t: self._tasks.pop(id(t), None))

    async def _run_job(self, job: ScanJob) -> None:
        try:
            await job.run()
        except Exception:
            logger.exception("[%s] job %s failed", self.name, job.key)
        finally:
            if self._running.get(job.key) is job:
                del self._running[job.key]
            if self._draining.get(job.key) is job:
                del self._draining[job.key]
            self._pump()
