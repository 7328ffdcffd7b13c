"""Capture record store.

``CaptureStore`` is the persistence seam every pipeline component depends
on. Each method runs in its own short transaction so that single-entity
updates are atomic and immediately visible to other workers.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import InvalidStatusTransition, RecordNotFound
from ..models.capture import CaptureStatus, GroupStatus
from ..models.jobs import JobStatus
from .dao import CaptureDAO, TERMINAL_CAPTURE_STATUSES, utcnow
from .database import DatabaseConfig
from .models import CaptureGroupRecord, CaptureRecord, JobRecord

logger = logging.getLogger(__name__)


class CaptureStore:
    """Transactional facade over ``CaptureDAO``."""

    def __init__(self, db: DatabaseConfig):
        self.db = db

    async def create_tables(self) -> None:
        await self.db.create_all()

    async def close(self) -> None:
        await self.db.close()

    # Groups

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
        async with self.db.session() as session:
            return await CaptureDAO(session).create_group(
                owner_id=owner_id,
                kind=kind,
                name=name,
                base_url=base_url,
                expected_total=expected_total,
                params=params,
                project_id=project_id,
            )

    async def get_group(self, group_id: str) -> CaptureGroupRecord:
        """Get a group or raise ``RecordNotFound``."""
        async with self.db.session() as session:
            group = await CaptureDAO(session).get_group(group_id)
        if group is None:
            raise RecordNotFound(f"Capture group not found: {group_id}")
        return group

    async def update_group_params(self, group_id: str, params: Dict[str, Any]) -> None:
        async with self.db.session() as session:
            if not await CaptureDAO(session).update_group_params(group_id, params):
                raise RecordNotFound(f"Capture group not found: {group_id}")

    async def set_expected_total(self, group_id: str, expected_total: int) -> None:
        async with self.db.session() as session:
            await CaptureDAO(session).set_expected_total(group_id, expected_total)

    async def increment_expected_total(self, group_id: str, amount: int = 1) -> None:
        async with self.db.session() as session:
            await CaptureDAO(session).increment_expected_total(group_id, amount)

    async def mark_group_processing(self, group_id: str) -> bool:
        async with self.db.session() as session:
            return await CaptureDAO(session).mark_group_processing(group_id)

    async def finalize_group(self, group_id: str, status: GroupStatus) -> bool:
        """Finalize a group; True only for the first caller."""
        async with self.db.session() as session:
            finalized = await CaptureDAO(session).finalize_group(group_id, status)
        if finalized:
            logger.info(f"Capture group {group_id} finalized as {status.value}")
        return finalized

    async def count_terminal_captures(self, group_id: str) -> int:
        """Count completed plus failed captures of a group."""
        async with self.db.session() as session:
            return await CaptureDAO(session).count_group_captures(group_id, TERMINAL_CAPTURE_STATUSES)

    async def count_captures_by_status(self, group_id: str) -> Dict[str, int]:
        async with self.db.session() as session:
            return await CaptureDAO(session).count_group_captures_by_status(group_id)

    async def list_group_captures(
        self,
        group_id: str,
        kind: Optional[str] = None,
        status: Optional[CaptureStatus] = None
    ) -> List[CaptureRecord]:
        async with self.db.session() as session:
            return await CaptureDAO(session).list_group_captures(group_id, kind=kind, status=status)

    # Captures

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
        async with self.db.session() as session:
            return await CaptureDAO(session).create_capture(
                owner_id=owner_id,
                url=url,
                kind=kind,
                group_id=group_id,
                parent_id=parent_id,
                metadata=metadata,
                project_id=project_id,
            )

    async def get_capture(self, capture_id: str) -> CaptureRecord:
        """Get a capture or raise ``RecordNotFound``."""
        async with self.db.session() as session:
            capture = await CaptureDAO(session).get_capture(capture_id)
        if capture is None:
            raise RecordNotFound(f"Capture not found: {capture_id}")
        return capture

    async def _transition(self, capture_id: str, target: CaptureStatus, **values: Any) -> CaptureRecord:
        async with self.db.session() as session:
            dao = CaptureDAO(session)
            moved = await dao.transition_capture(capture_id, target, **values)
            capture = await dao.get_capture(capture_id)

        if capture is None:
            raise RecordNotFound(f"Capture not found: {capture_id}")
        if not moved:
            raise InvalidStatusTransition("capture", capture_id, target.value)
        return capture

    async def mark_processing(self, capture_id: str) -> CaptureRecord:
        """pending -> processing."""
        return await self._transition(capture_id, CaptureStatus.PROCESSING)

    async def mark_completed(
        self,
        capture_id: str,
        image_path: str,
        thumbnail_path: str,
        width: int,
        height: int,
        file_size: int,
        title: Optional[str] = None,
        captured_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CaptureRecord:
        """processing -> completed, recording the result."""
        values: Dict[str, Any] = dict(
            image_path=image_path,
            thumbnail_path=thumbnail_path,
            width=width,
            height=height,
            file_size=file_size,
            title=title,
            captured_at=captured_at or utcnow(),
            error_message=None,
        )
        if metadata is not None:
            values['metadata_json'] = metadata
        return await self._transition(capture_id, CaptureStatus.COMPLETED, **values)

    async def mark_failed(self, capture_id: str, error: str) -> CaptureRecord:
        """pending|processing -> failed with a non-empty message."""
        return await self._transition(
            capture_id,
            CaptureStatus.FAILED,
            error_message=error or "Capture failed",
        )

    # Jobs

    async def enqueue_job(
        self,
        kind: str,
        payload: Dict[str, Any],
        run_at: Optional[datetime] = None
    ) -> JobRecord:
        async with self.db.session() as session:
            return await CaptureDAO(session).enqueue_job(kind, payload, run_at)

    async def get_job(self, job_id: str) -> JobRecord:
        async with self.db.session() as session:
            job = await CaptureDAO(session).get_job(job_id)
        if job is None:
            raise RecordNotFound(f"Job not found: {job_id}")
        return job

    async def claim_ready_jobs(self, limit: int) -> List[JobRecord]:
        async with self.db.session() as session:
            return await CaptureDAO(session).claim_ready_jobs(limit)

    async def finish_job(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        async with self.db.session() as session:
            return await CaptureDAO(session).finish_job(job_id, status, error)

    async def requeue_running_jobs(self) -> int:
        async with self.db.session() as session:
            return await CaptureDAO(session).requeue_running_jobs()

    async def count_jobs(self, status: Optional[JobStatus] = None) -> int:
        async with self.db.session() as session:
            return await CaptureDAO(session).count_jobs(status)
