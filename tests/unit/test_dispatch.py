"""Unit tests for the durable job scheduler."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from webshot.errors import EngineLaunchError, JobValidationError
from webshot.models.jobs import CaptureJob, CrawlJob, JobKind, JobResult, JobStatus
from webshot.persistence.dao import utcnow
from webshot.scheduling.dispatch import DispatchError, JobScheduler


def _capture_job(n: int = 1) -> CaptureJob:
    return CaptureJob(capture_id=f"c{n}", owner_id="user-1", url=f"https://example.com/{n}")


@pytest.fixture
def ok_handler():
    return AsyncMock(return_value=JobResult.ok())


@pytest_asyncio.fixture
async def scheduler(store, ok_handler):
    scheduler = JobScheduler(store, {JobKind.CAPTURE: ok_handler}, concurrency=2, poll_interval_seconds=0.1)
    yield scheduler
    await scheduler.stop(drain=False)


class TestEnqueue:
    """Tests for validating and persisting jobs."""

    def test_invalid_concurrency(self, store):
        with pytest.raises(ValueError):
            JobScheduler(store, concurrency=0)

    async def test_enqueue_persists_job(self, scheduler, store):
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())

        job = await scheduler.get_job(handle.job_id)
        assert handle.kind == JobKind.CAPTURE
        assert job.status == JobStatus.QUEUED.value
        assert job.kind == "capture"
        assert job.payload_json['capture_id'] == "c1"
        assert job.payload_json['options']['width'] == 1920

    async def test_enqueue_dict_payload(self, scheduler):
        handle = await scheduler.enqueue("crawl", {'owner_id': "user-1", 'base_url': "https://example.com"})

        job = await scheduler.get_job(handle.job_id)
        assert job.payload_json['max_pages'] == 50

    async def test_unknown_kind_rejected(self, scheduler, store):
        with pytest.raises(JobValidationError):
            await scheduler.enqueue("thumbnail", {})

        assert await store.count_jobs() == 0

    async def test_mismatched_payload_rejected(self, scheduler, store):
        with pytest.raises(JobValidationError):
            await scheduler.enqueue(JobKind.CAPTURE, CrawlJob(owner_id="u", base_url="https://example.com"))
        with pytest.raises(JobValidationError):
            await scheduler.enqueue(JobKind.CAPTURE, {'capture_id': "c1"})

        assert await store.count_jobs() == 0


class TestDispatch:
    """Tests for running jobs through their handlers."""

    async def test_runs_handler_once(self, scheduler, ok_handler):
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())

        await scheduler.run_until_idle(timeout=5)

        ok_handler.assert_awaited_once()
        payload = ok_handler.await_args.args[0]
        assert isinstance(payload, CaptureJob)
        assert payload.capture_id == "c1"

        job = await scheduler.get_job(handle.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.finished_at is not None

    async def test_failed_result_marks_job_failed(self, store):
        handler = AsyncMock(return_value=JobResult.failed("Crawl failed"))
        scheduler = JobScheduler(store, {JobKind.CRAWL: handler})
        handle = await scheduler.enqueue(JobKind.CRAWL, CrawlJob(owner_id="u", base_url="https://example.com"))

        await scheduler.run_until_idle(timeout=5)

        job = await scheduler.get_job(handle.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error == "Crawl failed"
        assert scheduler.get_stats()['failed_jobs'] == 1

    async def test_handler_exception_is_not_retried(self, store):
        handler = AsyncMock(side_effect=RuntimeError("page crashed"))
        scheduler = JobScheduler(store, {JobKind.CAPTURE: handler})
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())

        await scheduler.run_until_idle(timeout=5)

        job = await scheduler.get_job(handle.job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error == "page crashed"
        handler.assert_awaited_once()

    async def test_missing_handler(self, store):
        scheduler = JobScheduler(store, {})
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())

        await scheduler.run_until_idle(timeout=5)

        job = await scheduler.get_job(handle.job_id)
        assert job.status == JobStatus.FAILED.value
        assert "No handler" in job.error

    async def test_non_result_return_fails(self, store):
        scheduler = JobScheduler(store, {JobKind.CAPTURE: AsyncMock(return_value={'ok': True})})
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())

        await scheduler.run_until_idle(timeout=5)

        assert (await scheduler.get_job(handle.job_id)).status == JobStatus.FAILED.value

    async def test_concurrency_bound(self, store):
        active = 0
        peak = 0

        async def slow_handler(payload):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.05)
            active -= 1
            return JobResult.ok()

        scheduler = JobScheduler(store, {JobKind.CAPTURE: slow_handler}, concurrency=2)
        for n in range(5):
            await scheduler.enqueue(JobKind.CAPTURE, _capture_job(n))

        await scheduler.run_until_idle(timeout=5)

        assert peak == 2
        assert await store.count_jobs(JobStatus.COMPLETED) == 5
        assert scheduler.get_stats()['total_dispatched'] == 5

    async def test_future_job_waits_until_due(self, scheduler, ok_handler, store):
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job(), run_at=utcnow() + timedelta(seconds=0.3))

        assert await scheduler.dispatch_ready() == 0
        await scheduler.run_until_idle(timeout=5)

        ok_handler.assert_awaited_once()
        assert (await scheduler.get_job(handle.job_id)).status == JobStatus.COMPLETED.value


class TestEngineFailure:
    """Tests for halting dispatch when the browser engine cannot launch."""

    async def test_engine_failure_halts_dispatch(self, store):
        handler = AsyncMock(side_effect=EngineLaunchError("Executable doesn't exist"))
        scheduler = JobScheduler(store, {JobKind.CAPTURE: handler}, concurrency=1)
        first = await scheduler.enqueue(JobKind.CAPTURE, _capture_job(1))
        second = await scheduler.enqueue(JobKind.CAPTURE, _capture_job(2))

        await scheduler.run_until_idle(timeout=5)

        assert isinstance(scheduler.fatal_error, EngineLaunchError)
        assert (await scheduler.get_job(first.job_id)).status == JobStatus.FAILED.value
        assert (await scheduler.get_job(second.job_id)).status == JobStatus.QUEUED.value
        handler.assert_awaited_once()

        with pytest.raises(DispatchError):
            await scheduler.enqueue(JobKind.CAPTURE, _capture_job(3))
        assert await scheduler.dispatch_ready() == 0


class TestLifecycle:
    """Tests for the poll loop, recovery and shutdown."""

    async def test_poll_loop_runs_enqueued_job(self, scheduler, ok_handler):
        done = asyncio.Event()
        ok_handler.side_effect = lambda payload: done.set() or JobResult.ok()

        await scheduler.start()
        assert scheduler.is_running

        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())
        await asyncio.wait_for(done.wait(), timeout=5)
        await scheduler.stop()

        assert not scheduler.is_running
        assert (await scheduler.get_job(handle.job_id)).status == JobStatus.COMPLETED.value

    async def test_start_requeues_interrupted_jobs(self, store, ok_handler):
        job = await store.enqueue_job("capture", _capture_job().model_dump(mode='json'))
        await store.claim_ready_jobs(1)

        scheduler = JobScheduler(store, {JobKind.CAPTURE: ok_handler}, poll_interval_seconds=0.05)
        await scheduler.start()
        try:
            assert scheduler.get_stats()['requeued_on_start'] == 1
            await scheduler.run_until_idle(timeout=5)
        finally:
            await scheduler.stop()

        assert (await store.get_job(job.id)).status == JobStatus.COMPLETED.value

    async def test_stop_drains_in_flight(self, store):
        release = asyncio.Event()

        async def blocking_handler(payload):
            await release.wait()
            return JobResult.ok()

        scheduler = JobScheduler(store, {JobKind.CAPTURE: blocking_handler})
        handle = await scheduler.enqueue(JobKind.CAPTURE, _capture_job())
        assert await scheduler.dispatch_ready() == 1
        assert scheduler.in_flight == 1

        stopping = asyncio.create_task(scheduler.stop(drain=True))
        await asyncio.sleep(0.01)
        assert not stopping.done()

        release.set()
        await stopping
        assert scheduler.in_flight == 0
        assert (await scheduler.get_job(handle.job_id)).status == JobStatus.COMPLETED.value
