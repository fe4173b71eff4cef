"""In-process job queue using asyncio.

One queue and one background consumer per job kind. Job ids are taken off
the queue in FIFO order and each job runs to completion (external process
included) before the next one starts, so at most one runner per kind is
alive at a time.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.jobs.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

QUEUE_CAPACITY = 128


class InProcessQueue(JobDispatcher):
    """Bounded async job queue. Processes jobs one at a time."""

    def __init__(
        self,
        process_fn: Callable[[str], Awaitable[None]],
        name: str = "jobs",
        maxsize: int = QUEUE_CAPACITY,
    ):
        """
        process_fn: async callable(job_id) -> None
            Handles one job end to end; normally JobEngine.process.
        """
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._process_fn = process_fn
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def enqueue(self, job_id: str) -> None:
        await self._queue.put(job_id)

    def enqueue_nowait(self, job_id: str) -> bool:
        try:
            self._queue.put_nowait(job_id)
        except asyncio.QueueFull:
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every queued job id has been processed."""
        await self._queue.join()

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._worker_loop())
        logger.info(f"{self._name} worker started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"{self._name} worker stopped ({self.pending()} job(s) left queued)")

    async def _worker_loop(self) -> None:
        """Process jobs one at a time from the queue."""
        while self._running:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                await self._process_fn(job_id)
            except Exception as e:
                logger.error(f"{self._name} worker failed for {job_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()
