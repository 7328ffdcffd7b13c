"""Durable job scheduling and dispatch.

This module provides the JobScheduler: jobs are validated and persisted in
the ``capture_jobs`` table, a poll loop claims due jobs within a global
concurrency budget, and each job runs its kind's handler exactly once.
A failed handler marks the job failed; there is no automatic retry.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel

from ..config import SchedulerSettings
from ..errors import EngineLaunchError, JobFailure, JobValidationError
from ..models.jobs import JobKind, JobResult, JobStatus, parse_payload
from ..persistence.models import JobRecord
from ..persistence.store import CaptureStore


logger = logging.getLogger(__name__)


JobHandler = Callable[[Any], Awaitable[JobResult]]


class DispatchError(Exception):
    """Exception raised when dispatch operations fail."""
    pass


class JobHandle:
    """Reference to an enqueued job."""

    def __init__(self, job_id: str, kind: JobKind, run_at: datetime):
        self.job_id = job_id
        self.kind = kind
        self.run_at = run_at

    def __repr__(self) -> str:
        return f"JobHandle(job_id={self.job_id!r}, kind={self.kind.value})"


class DispatchStats:
    """Statistics for scheduler operations."""

    def __init__(self):
        self.total_dispatched = 0
        self.completed_jobs = 0
        self.failed_jobs = 0
        self.requeued_on_start = 0
        self.last_dispatch_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_dispatched': self.total_dispatched,
            'completed_jobs': self.completed_jobs,
            'failed_jobs': self.failed_jobs,
            'requeued_on_start': self.requeued_on_start,
            'last_dispatch_time': self.last_dispatch_time.isoformat() if self.last_dispatch_time else None,
        }


class JobScheduler:
    """Polls the durable queue and runs jobs with bounded concurrency."""

    def __init__(
        self,
        store: CaptureStore,
        handlers: Optional[Dict[JobKind, JobHandler]] = None,
        concurrency: int = 5,
        poll_interval_seconds: float = 10.0,
    ):
        """Initialize scheduler.

        Args:
            store: Record store holding the job queue
            handlers: Handler per job kind
            concurrency: Maximum concurrently executing jobs (all kinds)
            poll_interval_seconds: Queue polling interval
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.store = store
        self.handlers: Dict[JobKind, JobHandler] = dict(handlers or {})
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds

        self._running: Dict[str, asyncio.Task] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._shutdown = False
        self._fatal_error: Optional[BaseException] = None
        self._stats = DispatchStats()

    @classmethod
    def from_settings(
        cls,
        store: CaptureStore,
        settings: SchedulerSettings,
        handlers: Optional[Dict[JobKind, JobHandler]] = None,
    ) -> "JobScheduler":
        return cls(
            store,
            handlers,
            concurrency=settings.concurrency,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    def register(self, kind: JobKind, handler: JobHandler) -> None:
        self.handlers[JobKind(kind)] = handler

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._running)

    @property
    def fatal_error(self) -> Optional[BaseException]:
        return self._fatal_error

    async def enqueue(
        self,
        kind: Union[JobKind, str],
        payload: Union[BaseModel, Dict[str, Any]],
        run_at: Optional[datetime] = None,
    ) -> JobHandle:
        """Validate and persist a job.

        Args:
            kind: Job kind
            payload: Payload model or dict for ``kind``
            run_at: Earliest execution time (defaults to now)

        Returns:
            Handle of the persisted job

        Raises:
            JobValidationError: If the payload does not match ``kind``
            DispatchError: If dispatch was halted by a fatal engine error
        """
        if self._fatal_error is not None:
            raise DispatchError(f"Scheduler halted: {self._fatal_error}")

        try:
            job_kind = JobKind(kind)
        except ValueError:
            raise JobValidationError(f"Unknown job kind: {kind}")

        validated = parse_payload(job_kind, payload)
        job = await self.store.enqueue_job(job_kind.value, validated.model_dump(mode='json'), run_at)
        logger.info(f"Enqueued {job_kind.value} job {job.id}")

        self._wakeup.set()
        return JobHandle(job.id, job_kind, job.run_at)

    async def get_job(self, job_id: str) -> JobRecord:
        return await self.store.get_job(job_id)

    async def start(self) -> None:
        """Recover interrupted jobs and start polling."""
        if self.is_running:
            logger.warning("Scheduler already started")
            return

        self._shutdown = False
        requeued = await self.store.requeue_running_jobs()
        if requeued:
            logger.warning(f"Re-queued {requeued} jobs interrupted by a previous shutdown")
        self._stats.requeued_on_start += requeued

        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Started job scheduler (concurrency={self.concurrency})")

    async def stop(self, drain: bool = True) -> None:
        """Stop polling and drain (or cancel) in-flight jobs."""
        self._shutdown = True
        self._wakeup.set()

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        tasks = list(self._running.values())
        if tasks:
            if drain:
                logger.info(f"Draining {len(tasks)} in-flight jobs")
            else:
                for task in tasks:
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Stopped job scheduler")

    async def run_until_idle(self, timeout: Optional[float] = None) -> None:
        """Dispatch until no job is queued or running."""
        async def _drain() -> None:
            while True:
                await self.dispatch_ready()
                if self._running:
                    await asyncio.wait(list(self._running.values()), return_when=asyncio.FIRST_COMPLETED)
                    continue
                if self._shutdown or self._fatal_error is not None:
                    return
                if await self.store.count_jobs(JobStatus.QUEUED) == 0:
                    return
                # Queued jobs that are not due yet
                await asyncio.sleep(0.05)

        await asyncio.wait_for(_drain(), timeout)

    async def _poll_loop(self) -> None:
        """Main dispatch loop."""
        logger.info("Started dispatcher loop")

        while not self._shutdown:
            try:
                await self.dispatch_ready()
            except Exception as e:
                logger.error(f"Error in dispatcher loop: {e}")

            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def dispatch_ready(self) -> int:
        """Claim and start as many due jobs as free slots allow.

        Returns:
            Number of jobs started
        """
        if self._shutdown or self._fatal_error is not None:
            return 0

        free_slots = self.concurrency - len(self._running)
        if free_slots <= 0:
            return 0

        jobs = await self.store.claim_ready_jobs(free_slots)
        for job in jobs:
            task = asyncio.create_task(self._run_job(job))
            self._running[job.id] = task
            task.add_done_callback(lambda _t, job_id=job.id: self._job_done(job_id))
            self._stats.total_dispatched += 1
            self._stats.last_dispatch_time = datetime.now(timezone.utc)
            logger.info(f"Dispatched {job.kind} job {job.id}")

        return len(jobs)

    def _job_done(self, job_id: str) -> None:
        self._running.pop(job_id, None)
        if not self._shutdown:
            # A slot was freed
            self._wakeup.set()

    async def _run_job(self, job: JobRecord) -> None:
        try:
            result = await self._invoke(job)
        except EngineLaunchError as e:
            logger.critical(f"Browser engine unavailable, halting dispatch: {e}")
            self._fatal_error = e
            result = JobResult.failed(e)

        if result.success:
            await self.store.finish_job(job.id, JobStatus.COMPLETED)
            self._stats.completed_jobs += 1
            logger.info(f"Job {job.id} ({job.kind}) completed")
        else:
            await self.store.finish_job(job.id, JobStatus.FAILED, result.error)
            self._stats.failed_jobs += 1
            logger.error(f"Job {job.id} ({job.kind}) failed: {result.error}")

    async def _invoke(self, job: JobRecord) -> JobResult:
        handler = self.handlers.get(JobKind(job.kind))
        if handler is None:
            return JobResult.failed(JobFailure(f"No handler registered for {job.kind} jobs"))

        try:
            payload = parse_payload(job.kind, job.payload_json)
            result = await handler(payload)
        except (EngineLaunchError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.exception(f"Unhandled error in {job.kind} job {job.id}")
            return JobResult.failed(JobFailure(str(e) or e.__class__.__name__))

        if not isinstance(result, JobResult):
            return JobResult.failed(JobFailure(f"Handler for {job.kind} returned {type(result).__name__}"))
        return result

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.to_dict()
        stats['in_flight'] = len(self._running)
        return stats
