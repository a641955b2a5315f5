"""
Drive many photo analyses through a bounded number of concurrent asyncio tasks.

Admission waits on a semaphore sized to the concurrency budget; dispatches are additionally
spaced by the pacing delay. Results are reported as units finish, tagged with the index of
the request they belong to, and one failed photo never stops the batch.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ai_tagger.models import AnalysisRequest, AnalysisResult, ErrorKind


AnalyzeFn = Callable[[AnalysisRequest], Awaitable[AnalysisResult]]
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]
ProgressCallback = Callable[["BatchJob", int, AnalysisResult], None]


@dataclass
class BatchJob:
    """Live bookkeeping for one batch run."""

    total: int
    concurrency_budget: int
    pacing_delay: float = 0.0
    started_at: float = 0.0
    running: int = 0
    peak_running: int = 0
    dispatched: int = 0
    completed: int = 0
    failed: int = 0
    consumed_cpu: float = 0.0
    elapsed_wall: float = 0.0
    cancelled: bool = False
    failed_indices: list[int] = field(default_factory=list)

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    @property
    def succeeded(self) -> int:
        return self.completed - self.failed

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "remaining": self.remaining,
            "cancelled": self.cancelled,
            "peak_running": self.peak_running,
            "consumed_cpu": round(self.consumed_cpu, 3),
            "elapsed_wall": round(self.elapsed_wall, 3),
        }


class BatchScheduler:
    """
    Fan requests out to ``analyze`` and fan results back in.

    Example:
        scheduler = BatchScheduler(analyze, concurrency_budget=4, pacing_delay=1.0)
        async for index, result in scheduler.run(requests):
            ...

    """

    def __init__(
        self,
        analyze: AnalyzeFn,
        *,
        concurrency_budget: int = 4,
        pacing_delay: float = 0.0,
        on_progress: ProgressCallback | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.perf_counter,
    ) -> None:
        """
        Configure the scheduler.

        Args:
            analyze: One unit of work, normally ``RetryingClient.execute`` bound to a provider
            concurrency_budget: Maximum number of in-flight analyses (at least 1)
            pacing_delay: Minimum seconds between two dispatches
            on_progress: Called after each completed unit with the job, index and result
            sleep: Awaitable sleep used for pacing, swapped out in tests
            clock: Monotonic clock in seconds

        """
        self._analyze = analyze
        self.concurrency_budget = max(1, concurrency_budget)
        self.pacing_delay = max(0.0, pacing_delay)
        self._on_progress = on_progress
        self._sleep = sleep
        self._clock = clock
        self.job: BatchJob | None = None

    def cancel(self) -> None:
        """Stop admitting new work; in-flight units still finish and report."""
        if self.job is None:
            return
        if not self.job.cancelled:
            logger.info("batch_cancel_requested", **self.job.summary())
        self.job.cancelled = True

    async def _pace(self, job: BatchJob, last_dispatch: float | None) -> None:
        if job.pacing_delay <= 0 or last_dispatch is None:
            return
        if (wait := last_dispatch + job.pacing_delay - self._clock()) > 0:
            await self._sleep(wait)

    async def _work(
        self,
        job: BatchJob,
        index: int,
        request: AnalysisRequest,
        slots: asyncio.Semaphore,
        queue: "asyncio.Queue[tuple[int, AnalysisResult] | None]",
    ) -> None:
        started = self._clock()
        with logger.contextualize(file=request.file_name, index=f"{index + 1}/{job.total}"):
            try:
                result = await self._analyze(request)
            except Exception as exc:  # noqa: BLE001
                logger.exception("batch_unit_crashed", error=str(exc))
                result = AnalysisResult.failure(f"Unexpected error: {exc}", ErrorKind.INTERNAL)
            finally:
                job.running -= 1
                slots.release()

            elapsed = self._clock() - started
            job.completed += 1
            job.consumed_cpu += elapsed
            job.elapsed_wall = self._clock() - job.started_at
            if result.ok:
                logger.info(
                    "photo_analyzed",
                    seconds=round(elapsed, 3),
                    keywords=len(result.keywords),
                    has_title=bool(result.title),
                    has_caption=bool(result.caption),
                )
            else:
                job.failed += 1
                job.failed_indices.append(index)
                logger.error("photo_analysis_failed", error=result.error_message)

            if self._on_progress is not None:
                try:
                    self._on_progress(job, index, result)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("progress_callback_failed", error=str(exc))

        await queue.put((index, result))

    async def _admit(
        self,
        job: BatchJob,
        requests: Sequence[AnalysisRequest],
        queue: "asyncio.Queue[tuple[int, AnalysisResult] | None]",
    ) -> None:
        slots = asyncio.Semaphore(job.concurrency_budget)
        tasks: set[asyncio.Task[None]] = set()
        last_dispatch: float | None = None
        try:
            for index, request in enumerate(requests):
                if job.cancelled:
                    break
                await slots.acquire()
                await self._pace(job, last_dispatch)
                if job.cancelled:
                    slots.release()
                    break

                last_dispatch = self._clock()
                job.running += 1
                job.dispatched += 1
                job.peak_running = max(job.peak_running, job.running)
                tasks.add(asyncio.create_task(self._work(job, index, request, slots, queue)))

            if job.cancelled:
                logger.warning(
                    "batch_admission_stopped",
                    dispatched=job.dispatched,
                    skipped=job.total - job.dispatched,
                )
            if tasks:
                await asyncio.gather(*tasks)
        finally:
            job.elapsed_wall = self._clock() - job.started_at
            await queue.put(None)

    async def run(
        self,
        requests: Sequence[AnalysisRequest],
        *,
        concurrency_budget: int | None = None,
        pacing_delay: float | None = None,
    ) -> AsyncIterator[tuple[int, AnalysisResult]]:
        """
        Analyze ``requests`` and yield ``(index, result)`` pairs in completion order.

        Args:
            requests: Requests in submission order; ``index`` refers to this order
            concurrency_budget: Override of the scheduler's budget for this run
            pacing_delay: Override of the scheduler's pacing for this run

        Yields:
            One pair per dispatched request. After cancellation, requests that were never
            dispatched produce no pair.

        """
        job = BatchJob(
            total=len(requests),
            concurrency_budget=max(1, concurrency_budget or self.concurrency_budget),
            pacing_delay=max(0.0, self.pacing_delay if pacing_delay is None else pacing_delay),
            started_at=self._clock(),
        )
        self.job = job
        logger.info(
            "batch_started",
            total=job.total,
            budget=job.concurrency_budget,
            pacing=job.pacing_delay,
        )

        queue: asyncio.Queue[tuple[int, AnalysisResult] | None] = asyncio.Queue()
        admitter = asyncio.create_task(self._admit(job, requests, queue))
        drained = False
        try:
            while (item := await queue.get()) is not None:
                yield item
            drained = True
        finally:
            if not drained:
                # consumer stopped early
                job.cancelled = True
            await admitter

        logger.info("batch_finished", **job.summary())

    async def collect(
        self,
        requests: Sequence[AnalysisRequest],
        **overrides: Any,  # noqa: ANN401
    ) -> list[AnalysisResult | None]:
        """Run the batch and return results in submission order (None when never dispatched)."""
        results: list[AnalysisResult | None] = [None] * len(requests)
        async for index, result in self.run(requests, **overrides):
            results[index] = result
        return results
