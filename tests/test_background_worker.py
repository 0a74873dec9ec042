"""Tests for the background worker used for outcome dispatch."""

import asyncio

import pytest

from src.tripweaver.background_worker import BackgroundWorker


@pytest.fixture
async def worker():
    worker = BackgroundWorker(max_queue_size=5, max_concurrent=2, retry_base_delay=0.0)
    await worker.start()
    yield worker
    await worker.stop(timeout=1)


class TestBackgroundWorker:
    """Tests for submission, retries and shutdown."""

    async def test_runs_submitted_jobs(self, worker):
        seen = []

        async def job(value, scale=1):
            seen.append(value * scale)

        assert worker.submit(job, 2, scale=3, name="multiply") is not None
        assert await worker.drain(timeout=1)

        assert seen == [6]
        assert worker.get_metrics()["jobs_completed"] == 1

    async def test_retries_then_succeeds(self, worker):
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("store unavailable")

        worker.submit(flaky, max_attempts=3)
        await worker.drain(timeout=1)

        metrics = worker.get_metrics()
        assert calls == 3
        assert metrics["jobs_completed"] == 1
        assert metrics["total_retries"] == 2

    async def test_gives_up_after_max_attempts(self, worker):
        async def broken():
            raise ValueError("bad record")

        worker.submit(broken, max_attempts=2)
        await worker.drain(timeout=1)

        metrics = worker.get_metrics()
        assert metrics["jobs_failed"] == 1
        assert metrics["jobs_completed"] == 0

    async def test_full_queue_drops_jobs(self):
        worker = BackgroundWorker(max_queue_size=1, max_concurrent=1)
        await worker.start()
        release = asyncio.Event()

        async def blocked():
            await release.wait()

        worker.submit(blocked)
        await asyncio.sleep(0)  # first job leaves the queue
        assert worker.submit(blocked) is not None
        assert worker.submit(blocked) is None
        assert worker.get_metrics()["jobs_dropped"] == 1

        release.set()
        await worker.stop(timeout=1)

    async def test_submit_when_stopped_is_dropped(self):
        worker = BackgroundWorker()

        async def job():
            pass

        assert worker.submit(job) is None
        assert worker.metrics.jobs_dropped == 1

    async def test_drain_timeout(self, worker):
        release = asyncio.Event()

        async def blocked():
            await release.wait()

        worker.submit(blocked)
        assert not await worker.drain(timeout=0.01)
        release.set()
        assert await worker.drain(timeout=1)

    async def test_stop_waits_for_queued_jobs(self):
        worker = BackgroundWorker(max_concurrent=1)
        await worker.start()
        done = []

        async def job(i):
            await asyncio.sleep(0)
            done.append(i)

        for i in range(3):
            worker.submit(job, i)
        await worker.stop(timeout=1)

        assert done == [0, 1, 2]
        assert not worker.is_running
