"""Tests for the concurrent batch scheduler."""

import asyncio
from collections.abc import Callable

import pytest

from ai_tagger.batch import BatchJob, BatchScheduler
from ai_tagger.models import AnalysisRequest, AnalysisResult, ErrorKind
from conftest import FakeClock


def _requests(
    request_factory: Callable[..., AnalysisRequest],
    count: int,
) -> list[AnalysisRequest]:
    return [request_factory(f"IMG_{index:04d}.jpg") for index in range(count)]


async def _collect(
    scheduler: BatchScheduler,
    requests: list[AnalysisRequest],
) -> dict[int, AnalysisResult]:
    return {index: result async for index, result in scheduler.run(requests)}


@pytest.mark.asyncio
async def test_never_more_than_budget_in_flight(
    request_factory: Callable[..., AnalysisRequest],
) -> None:
    """Twenty requests with a budget of four never observe a fifth concurrent unit."""
    running = 0
    observed: list[int] = []

    async def analyze(request: AnalysisRequest) -> AnalysisResult:
        nonlocal running
        running += 1
        observed.append(running)
        await asyncio.sleep(0.001)
        running -= 1
        return AnalysisResult(title=request.file_name)

    scheduler = BatchScheduler(analyze, concurrency_budget=4)
    results = await _collect(scheduler, _requests(request_factory, 20))

    assert len(results) == 20
    assert max(observed) == 4
    assert scheduler.job is not None
    assert scheduler.job.peak_running == 4
    assert scheduler.job.running == 0


@pytest.mark.asyncio
async def test_results_are_correlated_by_index(
    request_factory: Callable[..., AnalysisRequest],
) -> None:
    """Later requests finish first, yet every index maps back to its own request."""
    requests = _requests(request_factory, 6)
    finished: list[int] = []

    async def analyze(request: AnalysisRequest) -> AnalysisResult:
        position = requests.index(request)
        await asyncio.sleep(0.002 * (len(requests) - position))
        finished.append(position)
        return AnalysisResult(title=request.file_name)

    scheduler = BatchScheduler(analyze, concurrency_budget=6)
    results = await _collect(scheduler, requests)

    assert finished != sorted(finished)
    assert {index: result.title for index, result in results.items()} == {
        index: request.file_name for index, request in enumerate(requests)
    }


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_batch(
    request_factory: Callable[..., AnalysisRequest],
) -> None:
    """Failed results and crashing units are reported next to the successes."""

    async def analyze(request: AnalysisRequest) -> AnalysisResult:
        if request.file_name == "IMG_0001.jpg":
            return AnalysisResult.failure("invalid credential", ErrorKind.AUTH)
        if request.file_name == "IMG_0003.jpg":
            msg = "decoder exploded"
            raise RuntimeError(msg)
        return AnalysisResult(title="ok")

    scheduler = BatchScheduler(analyze, concurrency_budget=2)
    results = await _collect(scheduler, _requests(request_factory, 5))

    assert len(results) == 5
    assert results[1].error_message == "invalid credential"
    assert results[3].error_kind is ErrorKind.INTERNAL
    assert results[3].error_message == "Unexpected error: decoder exploded"
    assert [results[i].ok for i in (0, 2, 4)] == [True, True, True]

    job = scheduler.job
    assert job is not None
    assert (job.completed, job.failed, job.succeeded, job.remaining) == (5, 2, 3, 0)
    assert sorted(job.failed_indices) == [1, 3]


@pytest.mark.asyncio
async def test_cancel_stops_admission_but_keeps_in_flight_results(
    request_factory: Callable[..., AnalysisRequest],
) -> None:
    scheduler: BatchScheduler

    async def analyze(request: AnalysisRequest) -> AnalysisResult:
        await asyncio.sleep(0.001)
        return AnalysisResult(title=request.file_name)

    def cancel_on_first(job: BatchJob, index: int, result: AnalysisResult) -> None:  # noqa: ARG001
        scheduler.cancel()

    scheduler = BatchScheduler(analyze, concurrency_budget=2, on_progress=cancel_on_first)
    results = await _collect(scheduler, _requests(request_factory, 10))

    job = scheduler.job
    assert job is not None
    assert job.cancelled
    assert job.dispatched < 10
    assert len(results) == job.dispatched == job.completed
    assert all(result.ok for result in results.values())


@pytest.mark.asyncio
async def test_pacing_spaces_dispatches(
    request_factory: Callable[..., AnalysisRequest],
    fake_clock: FakeClock,
) -> None:
    """With pacing 1.5s, every dispatch after the first waits for the spacing."""
    dispatched_at: list[float] = []

    async def analyze(request: AnalysisRequest) -> AnalysisResult:  # noqa: ARG001
        dispatched_at.append(fake_clock())
        return AnalysisResult()

    scheduler = BatchScheduler(
        analyze,
        concurrency_budget=4,
        pacing_delay=1.5,
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )
    await _collect(scheduler, _requests(request_factory, 4))

    assert fake_clock.sleeps == [1.5, 1.5, 1.5]
    assert dispatched_at == [100.0, 101.5, 103.0, 104.5]
    assert scheduler.job is not None
    assert scheduler.job.elapsed_wall == pytest.approx(4.5)


@pytest.mark.asyncio
async def test_no_pacing_means_no_sleeps(
    request_factory: Callable[..., AnalysisRequest],
    fake_clock: FakeClock,
) -> None:
    async def analyze(request: AnalysisRequest) -> AnalysisResult:  # noqa: ARG001
        return AnalysisResult()

    scheduler = BatchScheduler(analyze, sleep=fake_clock.sleep, clock=fake_clock)
    await _collect(scheduler, _requests(request_factory, 5))

    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_progress_counters_and_collect(
    request_factory: Callable[..., AnalysisRequest],
) -> None:
    snapshots: list[tuple[int, int]] = []

    async def analyze(request: AnalysisRequest) -> AnalysisResult:
        return AnalysisResult(title=request.file_name)

    def on_progress(job: BatchJob, index: int, result: AnalysisResult) -> None:  # noqa: ARG001
        snapshots.append((job.completed, job.remaining))

    requests = _requests(request_factory, 3)
    scheduler = BatchScheduler(analyze, concurrency_budget=1, on_progress=on_progress)
    ordered = await scheduler.collect(requests)

    assert [result.title if result else None for result in ordered] == [
        request.file_name for request in requests
    ]
    assert snapshots == [(1, 2), (2, 1), (3, 0)]
    assert scheduler.job is not None
    assert scheduler.job.consumed_cpu >= 0


@pytest.mark.asyncio
async def test_empty_batch_finishes_immediately() -> None:
    async def analyze(request: AnalysisRequest) -> AnalysisResult:  # noqa: ARG001
        return AnalysisResult()

    scheduler = BatchScheduler(analyze)
    assert await scheduler.collect([]) == []
    assert scheduler.job is not None
    assert scheduler.job.total == 0
