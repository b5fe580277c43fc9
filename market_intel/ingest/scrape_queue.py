"""Memory-governed FIFO queue that runs one competitor scrape at a time.

Headless Chromium is the largest memory consumer in the process, so all
scrapes (scheduled sweeps and operator triggers) go through one worker task.
Memory is checked before and after each job; over budget the worker collects
garbage and pauses, then runs the job anyway. Queued work is never dropped.
"""

import asyncio
import gc
import logging
from typing import Any, Awaitable, Callable, Optional

import psutil

from market_intel.config import settings
from market_intel import metrics

logger = logging.getLogger(__name__)

ScrapeHandler = Callable[[int], Awaitable[Any]]


class ScrapeQueue:
    """Single-worker scrape queue.

    Callers get an ``asyncio.Future`` per job that resolves with the
    handler's result or exception.
    """

    def __init__(
        self,
        handler: ScrapeHandler,
        memory_limit_mb: Optional[float] = None,
        gc_pause_seconds: Optional[float] = None,
        job_delay_seconds: Optional[float] = None,
    ):
        self._handler = handler
        self.memory_limit_mb = memory_limit_mb if memory_limit_mb is not None else settings.scrape_memory_limit_mb
        self.gc_pause_seconds = gc_pause_seconds if gc_pause_seconds is not None else settings.scrape_gc_pause_seconds
        self.job_delay_seconds = job_delay_seconds if job_delay_seconds is not None else settings.scrape_queue_delay_seconds

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.busy = False
        self.current_competitor_id: Optional[int] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def memory_usage(self) -> float:
        """Resident set size of this process in MB."""
        rss_mb = psutil.Process().memory_info().rss / 1024 / 1024
        metrics.process_memory_mb.set(rss_mb)
        return round(rss_mb, 1)

    def memory_ok(self) -> bool:
        return self.memory_usage() <= self.memory_limit_mb

    def start(self):
        """Start the worker task on the running loop (idempotent)."""
        if self.running:
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="scrape-queue-worker")
        logger.info("Scrape queue worker started")

    def enqueue(self, competitor_id: int) -> asyncio.Future:
        """Queue a scrape and return a future for its result."""
        self.start()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((competitor_id, future))
        metrics.scrape_queue_depth.set(self._queue.qsize())
        logger.info(f"Queued scrape for competitor {competitor_id} (queue length: {self._queue.qsize()})")
        return future

    async def submit(self, competitor_id: int) -> Any:
        """Queue a scrape and wait for it to finish."""
        return await self.enqueue(competitor_id)

    async def stop(self):
        """Cancel the worker and fail anything still waiting."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if not future.done():
                    future.set_exception(RuntimeError("Scrape queue stopped"))
        self.busy = False
        logger.info("Scrape queue worker stopped")

    async def _run(self):
        while True:
            competitor_id, future = await self._queue.get()
            metrics.scrape_queue_depth.set(self._queue.qsize())
            if future.done():
                # Caller gave up waiting
                self._queue.task_done()
                continue

            self.busy = True
            self.current_competitor_id = competitor_id
            try:
                await self._relieve_memory_pressure()
                result = await self._handler(competitor_id)
            except asyncio.CancelledError:
                if not future.done():
                    future.set_exception(RuntimeError("Scrape queue stopped"))
                raise
            except Exception as e:
                logger.error(f"Scrape job for competitor {competitor_id} failed: {e}")
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self.busy = False
                self.current_competitor_id = None
                self._queue.task_done()
                gc.collect()
                logger.info(f"Memory after scrape of competitor {competitor_id}: {self.memory_usage()}MB")

            if not self._queue.empty():
                await asyncio.sleep(self.job_delay_seconds)

    async def _relieve_memory_pressure(self):
        rss_mb = self.memory_usage()
        if rss_mb <= self.memory_limit_mb:
            return
        logger.warning(
            f"High memory usage before scrape: {rss_mb}MB (limit: {self.memory_limit_mb}MB), "
            f"collecting and pausing {self.gc_pause_seconds}s"
        )
        gc.collect()
        await asyncio.sleep(self.gc_pause_seconds)
