"""Data Access Objects for the capture record store.

Status changes are issued as single conditional UPDATE statements
(``WHERE status IN (...)``) so that concurrent writers, in this process or
another, can never move an entity backwards or finalize a group twice.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.capture import CaptureStatus, GroupStatus
from ..models.jobs import JobStatus
from .models import CaptureGroupRecord, CaptureRecord, JobRecord


TERMINAL_CAPTURE_STATUSES = (CaptureStatus.COMPLETED.value, CaptureStatus.FAILED.value)

# target status -> statuses it may be entered from
CAPTURE_TRANSITIONS = {
    CaptureStatus.PROCESSING: (CaptureStatus.PENDING.value,),
    CaptureStatus.COMPLETED: (CaptureStatus.PROCESSING.value,),
    CaptureStatus.FAILED: (CaptureStatus.PENDING.value, CaptureStatus.PROCESSING.value),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CaptureDAO:
    """Data Access Object for captures, groups and queued jobs."""

    def __init__(self, session: AsyncSession):
        """Initialize DAO with database session."""
        self.session = session

    # ============= Group Operations =============

    async def create_group(
        self,
        owner_id: str,
        kind: str,
        name: str,
        base_url: str,
        expected_total: int = 0,
        params: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
    ) -> CaptureGroupRecord:
        """Create a new pending capture group."""
        group = CaptureGroupRecord(
            owner_id=owner_id,
            project_id=project_id,
            kind=kind,
            name=name,
            base_url=base_url,
            expected_total=expected_total,
            status=GroupStatus.PENDING.value,
            params_json=params,
            created_at=utcnow(),
        )

        self.session.add(group)
        await self.session.flush()
        return group

    async def get_group(self, group_id: str) -> Optional[CaptureGroupRecord]:
        """Get group by ID."""
        result = await self.session.execute(
            select(CaptureGroupRecord)
            .where(CaptureGroupRecord.id == group_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_group_params(self, group_id: str, params: Dict[str, Any]) -> bool:
        """Merge keys into the group's parameter document."""
        group = await self.get_group(group_id)
        if group is None:
            return False
        group.params_json = {**group.params, **params}
        await self.session.flush()
        return True

    async def set_expected_total(self, group_id: str, expected_total: int) -> bool:
        result = await self.session.execute(
            update(CaptureGroupRecord)
            .where(CaptureGroupRecord.id == group_id)
            .values(expected_total=expected_total)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_expected_total(self, group_id: str, amount: int = 1) -> bool:
        """Atomically grow a group's expected total."""
        result = await self.session.execute(
            update(CaptureGroupRecord)
            .where(CaptureGroupRecord.id == group_id)
            .values(expected_total=CaptureGroupRecord.expected_total + amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_group_processing(self, group_id: str) -> bool:
        """Move a pending group to processing; no-op otherwise."""
        result = await self.session.execute(
            update(CaptureGroupRecord)
            .where(
                CaptureGroupRecord.id == group_id,
                CaptureGroupRecord.status == GroupStatus.PENDING.value,
            )
            .values(status=GroupStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finalize_group(self, group_id: str, status: GroupStatus) -> bool:
        """Finalize a group exactly once.

        Returns:
            True only for the caller whose update moved the group out of
            pending/processing
        """
        result = await self.session.execute(
            update(CaptureGroupRecord)
            .where(
                CaptureGroupRecord.id == group_id,
                CaptureGroupRecord.status.in_(
                    (GroupStatus.PENDING.value, GroupStatus.PROCESSING.value)
                ),
            )
            .values(status=status.value, finalized_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ============= Capture Operations =============

    async def create_capture(
        self,
        owner_id: str,
        url: str,
        kind: str,
        group_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
    ) -> CaptureRecord:
        """Create a new pending capture."""
        now = utcnow()
        capture = CaptureRecord(
            owner_id=owner_id,
            project_id=project_id,
            url=url,
            kind=kind,
            group_id=group_id,
            parent_id=parent_id,
            status=CaptureStatus.PENDING.value,
            metadata_json=metadata,
            created_at=now,
            updated_at=now,
        )

        self.session.add(capture)
        await self.session.flush()
        return capture

    async def get_capture(self, capture_id: str) -> Optional[CaptureRecord]:
        """Get capture by ID."""
        result = await self.session.execute(
            select(CaptureRecord)
            .where(CaptureRecord.id == capture_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition_capture(
        self,
        capture_id: str,
        target: CaptureStatus,
        **values: Any
    ) -> bool:
        """Conditionally move a capture to ``target``.

        Returns:
            False if the capture was not in a status ``target`` may be
            entered from
        """
        result = await self.session.execute(
            update(CaptureRecord)
            .where(
                CaptureRecord.id == capture_id,
                CaptureRecord.status.in_(CAPTURE_TRANSITIONS[target]),
            )
            .values(status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_group_captures(
        self,
        group_id: str,
        kind: Optional[str] = None,
        status: Optional[CaptureStatus] = None
    ) -> List[CaptureRecord]:
        """List captures of a group in creation order."""
        query = select(CaptureRecord).where(CaptureRecord.group_id == group_id)
        if kind:
            query = query.where(CaptureRecord.kind == kind)
        if status:
            query = query.where(CaptureRecord.status == status.value)
        query = query.order_by(CaptureRecord.created_at, CaptureRecord.id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_group_captures(
        self,
        group_id: str,
        statuses: Optional[Iterable[str]] = None
    ) -> int:
        """Count captures of a group, optionally restricted to statuses."""
        query = select(func.count(CaptureRecord.id)).where(CaptureRecord.group_id == group_id)
        if statuses is not None:
            query = query.where(CaptureRecord.status.in_(tuple(statuses)))

        result = await self.session.execute(query)
        return result.scalar() or 0

    async def count_group_captures_by_status(self, group_id: str) -> Dict[str, int]:
        """Get capture counts of a group grouped by status."""
        result = await self.session.execute(
            select(CaptureRecord.status, func.count(CaptureRecord.id))
            .where(CaptureRecord.group_id == group_id)
            .group_by(CaptureRecord.status)
        )
        return {status: count for status, count in result.all()}

    # ============= Job Queue Operations =============

    async def enqueue_job(
        self,
        kind: str,
        payload: Dict[str, Any],
        run_at: Optional[datetime] = None
    ) -> JobRecord:
        """Persist a queued job."""
        now = utcnow()
        job = JobRecord(
            kind=kind,
            payload_json=payload,
            status=JobStatus.QUEUED.value,
            run_at=run_at or now,
            created_at=now,
        )

        self.session.add(job)
        await self.session.flush()
        return job

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        result = await self.session.execute(
            select(JobRecord)
            .where(JobRecord.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim_ready_jobs(self, limit: int, now: Optional[datetime] = None) -> List[JobRecord]:
        """Claim up to ``limit`` due jobs, oldest first.

        Each candidate is claimed with a conditional queued -> running
        update; candidates taken by another worker are skipped.
        """
        if limit <= 0:
            return []

        now = now or utcnow()
        result = await self.session.execute(
            select(JobRecord.id)
            .where(
                JobRecord.status == JobStatus.QUEUED.value,
                JobRecord.run_at <= now,
            )
            .order_by(JobRecord.run_at, JobRecord.created_at)
            .limit(limit)
        )
        candidate_ids = list(result.scalars().all())

        claimed = []
        for job_id in candidate_ids:
            update_result = await self.session.execute(
                update(JobRecord)
                .where(JobRecord.id == job_id, JobRecord.status == JobStatus.QUEUED.value)
                .values(status=JobStatus.RUNNING.value, started_at=now)
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount == 1:
                job = await self.get_job(job_id)
                if job is not None:
                    claimed.append(job)

        return claimed

    async def finish_job(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        """Move a running job to its terminal status."""
        result = await self.session.execute(
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.status == JobStatus.RUNNING.value)
            .values(status=status.value, error=error, finished_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def requeue_running_jobs(self) -> int:
        """Return jobs left running by a previous process to the queue."""
        result = await self.session.execute(
            update(JobRecord)
            .where(JobRecord.status == JobStatus.RUNNING.value)
            .values(status=JobStatus.QUEUED.value, started_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_jobs(self, status: Optional[JobStatus] = None) -> int:
        query = select(func.count(JobRecord.id))
        if status:
            query = query.where(JobRecord.status == status.value)
        result = await self.session.execute(query)
        return result.scalar() or 0
