"""
Background worker for outcome dispatch.

Outcome records are handed to the learning optimizer off the request path:
the orchestration core submits ``optimizer.record(outcome)`` here and returns
its response without waiting.

- Bounded queue; a full queue drops the job and counts it
- Failed jobs are retried with exponential backoff up to ``max_attempts``
- ``drain()`` waits for everything queued so far
- ``stop()`` drains (bounded by a timeout) and then cancels the workers
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


@dataclass
class BackgroundJob:
    """A coroutine call queued for background execution."""

    coro_func: Callable[..., Coroutine[Any, Any, Any]]
    args: tuple = field(default_factory=tuple)
    kwargs: dict = field(default_factory=dict)
    name: str = ""
    id: UUID = field(default_factory=uuid4)
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    error: Optional[str] = None
    result: Any = None


@dataclass
class WorkerMetrics:
    jobs_submitted: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_dropped: int = 0  # Queue full or worker stopped
    total_retries: int = 0
    current_queue_size: int = 0
    peak_queue_size: int = 0


class BackgroundWorker:
    """Bounded-queue worker pool.

    Usage:
        worker = BackgroundWorker(max_queue_size=100, max_concurrent=2)
        await worker.start()
        worker.submit(optimizer.record, outcome, name="learning.record")
        await worker.stop(timeout=10)
    """

    def __init__(
        self,
        max_queue_size: int = 100,
        max_concurrent: int = 2,
        retry_base_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        self.max_queue_size = max_queue_size
        self.max_concurrent = max_concurrent
        self.retry_base_delay = retry_base_delay
        self.max_retry_delay = max_retry_delay

        self._queue: Optional[asyncio.Queue[BackgroundJob]] = None
        self._workers: list[asyncio.Task] = []
        self._running = False
        self._metrics = WorkerMetrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def metrics(self) -> WorkerMetrics:
        self._metrics.current_queue_size = self._queue.qsize() if self._queue else 0
        return self._metrics

    def get_metrics(self) -> dict[str, Any]:
        return asdict(self.metrics)

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> None:
        if self._running:
            return
        # Created here so the queue binds to the running loop
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i)) for i in range(self.max_concurrent)
        ]
        logger.info(f"Background worker started with {self.max_concurrent} workers")

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued job has finished.

        Returns:
            True if the queue drained, False on timeout
        """
        if self._queue is None:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self, timeout: float = 30.0) -> None:
        if not self._running:
            return
        self._running = False

        if self._queue is not None and not self._queue.empty():
            logger.info(f"Waiting for {self._queue.qsize()} background jobs...")
        if not await self.drain(timeout):
            logger.warning(
                f"Shutdown timeout: {self._queue.qsize()} background jobs abandoned"
            )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Background worker stopped")

    # ============================================
    # Submission
    # ============================================

    def submit(
        self,
        coro_func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        name: str = "",
        max_attempts: int = 3,
        **kwargs: Any,
    ) -> Optional[UUID]:
        """Queue ``coro_func(*args, **kwargs)``.

        Returns:
            Job id, or None if the worker is stopped or the queue is full
        """
        job = BackgroundJob(
            coro_func=coro_func,
            args=args,
            kwargs=kwargs,
            name=name or getattr(coro_func, "__name__", "job"),
            max_attempts=max_attempts,
        )
        if not self._running or self._queue is None:
            self._metrics.jobs_dropped += 1
            logger.warning(f"Background worker not running; dropped job {job.name}")
            return None

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._metrics.jobs_dropped += 1
            logger.warning(f"Queue full ({self.max_queue_size}); dropped job {job.name}")
            return None

        self._metrics.jobs_submitted += 1
        self._metrics.peak_queue_size = max(self._metrics.peak_queue_size, self._queue.qsize())
        logger.debug(f"Job {job.id} ({job.name}) queued")
        return job.id

    # ============================================
    # Workers
    # ============================================

    async def _worker_loop(self, worker_id: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await self._run(job, worker_id)
            except Exception as e:
                logger.exception(f"Worker {worker_id} error on job {job.name}: {e}")
            finally:
                self._queue.task_done()

    async def _run(self, job: BackgroundJob, worker_id: int) -> None:
        while True:
            job.status = JobStatus.RUNNING
            job.attempts += 1
            try:
                job.result = await job.coro_func(*job.args, **job.kwargs)
            except Exception as e:
                job.error = str(e)
                if job.attempts >= job.max_attempts:
                    job.status = JobStatus.FAILED
                    job.completed_at = time.time()
                    self._metrics.jobs_failed += 1
                    logger.error(
                        f"Job {job.id} ({job.name}) failed after {job.attempts} attempts: {e}"
                    )
                    return

                job.status = JobStatus.RETRYING
                delay = min(
                    self.retry_base_delay * (2 ** (job.attempts - 1)),
                    self.max_retry_delay,
                )
                self._metrics.total_retries += 1
                logger.warning(
                    f"Job {job.id} ({job.name}) failed (attempt {job.attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
                continue

            job.status = JobStatus.COMPLETED
            job.completed_at = time.time()
            self._metrics.jobs_completed += 1
            logger.debug(f"Job {job.id} ({job.name}) completed on worker {worker_id}")
            return


__all__ = ["BackgroundJob", "BackgroundWorker", "JobStatus", "WorkerMetrics"]
