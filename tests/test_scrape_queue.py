"""Tests for the single-worker scrape queue."""

import asyncio

import pytest

from market_intel.ingest.scrape_queue import ScrapeQueue


class RecordingHandler:
    """Scrape handler that records call order and peak concurrency."""

    def __init__(self, fail_ids=()):
        self.calls = []
        self.active = 0
        self.peak = 0
        self.fail_ids = set(fail_ids)

    async def __call__(self, competitor_id: int):
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.calls.append(competitor_id)
        await asyncio.sleep(0.01)
        self.active -= 1
        if competitor_id in self.fail_ids:
            raise RuntimeError(f"scrape {competitor_id} failed")
        return {"competitor_id": competitor_id}


def make_queue(handler, memory_limit_mb=1_000_000):
    return ScrapeQueue(
        handler=handler,
        memory_limit_mb=memory_limit_mb,
        gc_pause_seconds=0,
        job_delay_seconds=0,
    )


@pytest.mark.asyncio
async def test_runs_one_at_a_time_in_fifo_order():
    handler = RecordingHandler()
    queue = make_queue(handler)

    results = await asyncio.gather(*(queue.submit(i) for i in (3, 1, 2)))

    assert handler.calls == [3, 1, 2]
    assert handler.peak == 1
    assert [r["competitor_id"] for r in results] == [3, 1, 2]
    await queue.stop()


@pytest.mark.asyncio
async def test_failure_is_delivered_to_caller_and_queue_continues():
    handler = RecordingHandler(fail_ids={1})
    queue = make_queue(handler)

    failed = queue.enqueue(1)
    ok = queue.enqueue(2)

    with pytest.raises(RuntimeError):
        await failed
    assert (await ok) == {"competitor_id": 2}
    assert queue.running
    await queue.stop()


@pytest.mark.asyncio
async def test_over_memory_budget_still_runs_job():
    handler = RecordingHandler()
    queue = make_queue(handler, memory_limit_mb=0)

    assert queue.memory_ok() is False
    assert await queue.submit(7) == {"competitor_id": 7}
    await queue.stop()


@pytest.mark.asyncio
async def test_stop_fails_waiting_jobs():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_handler(competitor_id):
        started.set()
        await release.wait()
        return competitor_id

    queue = make_queue(slow_handler)
    running = queue.enqueue(1)
    waiting = queue.enqueue(2)
    await started.wait()
    assert queue.busy
    assert queue.pending == 1

    await queue.stop()

    with pytest.raises(RuntimeError):
        await running
    with pytest.raises(RuntimeError):
        await waiting
    assert not queue.running


@pytest.mark.asyncio
async def test_start_is_idempotent():
    queue = make_queue(RecordingHandler())
    queue.start()
    worker = queue._worker
    queue.start()
    assert queue._worker is worker
    await queue.stop()
