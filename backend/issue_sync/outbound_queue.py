# issue_sync/outbound_queue.py — Fire-and-forget job queue for outbound tracker calls
#
# Callers submit and return immediately; worker tasks run the jobs. A failing
# job is logged and dropped, it never reaches the submitter.
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Awaitable, List

from issue_sync import config

logger = logging.getLogger("boardsync.outbound-queue")

JobFactory = Callable[[], Awaitable[None]]


@dataclass
class OutboundJob:
    name: str
    run: JobFactory


class OutboundQueue:
    def __init__(self, maxsize: int = None, workers: int = None):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or config.OUTBOUND_QUEUE_SIZE)
        self._worker_count = workers or config.OUTBOUND_WORKERS
        self._workers: List[asyncio.Task] = []
        self._shutdown = False
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    def submit(self, name: str, run: JobFactory) -> bool:
        """Queue a job; returns False (and drops it) when the queue is full"""
        try:
            self._queue.put_nowait(OutboundJob(name, run))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Outbound queue full ({self._queue.maxsize}), dropping job {name}")
            return False
        return True

    async def start(self):
        if self.running:
            return
        self._shutdown = False
        logger.info(f"Starting {self._worker_count} outbound workers")
        self._workers = [
            asyncio.create_task(self._work(f"outbound_{i}")) for i in range(self._worker_count)
        ]

    async def stop(self):
        logger.info("Stopping outbound workers...")
        self._shutdown = True
        for worker in self._workers:
            if not worker.done():
                worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def drain(self):
        """Wait until every queued job has run; runs them inline when no worker is up"""
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: OutboundJob):
        try:
            await job.run()
            self.completed += 1
        except Exception:
            self.failed += 1
            logger.error(f"Outbound job {job.name} failed", exc_info=True)

    async def _work(self, worker_name: str):
        logger.info(f"Outbound worker {worker_name} started")
        while not self._shutdown:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                await self._run(job)
            finally:
                self._queue.task_done()
        logger.info(f"Outbound worker {worker_name} stopped")
