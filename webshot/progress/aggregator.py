"""Progress aggregation for capture groups.

Every time a member capture reaches a terminal state the aggregator
recounts the group's terminal members from the record store, publishes the
group's progress, and finalizes the group the first time the count reaches
the expected total. Finalization of a frame group that requested
auto-scroll enqueues the follow-up auto-scroll job.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..models.capture import (
    AutoScrollOptions,
    CaptureKind,
    CaptureOptions,
    CaptureStatus,
    GroupKind,
    GroupProgressEvent,
    GroupStatus,
)
from ..models.jobs import AutoScrollJob, JobKind
from ..persistence.models import CaptureRecord
from ..persistence.store import CaptureStore
from .notifications import ProgressPublisher

logger = logging.getLogger(__name__)


JobEnqueuer = Callable[[JobKind, Any], Awaitable[Any]]


class GroupProgress:
    """Snapshot of a group's progress at one observation."""

    def __init__(self, group_id: str, completed: int, expected: int, status: GroupStatus, finalized_now: bool = False):
        self.group_id = group_id
        self.completed = completed
        self.expected = expected
        self.status = status
        self.finalized_now = finalized_now

    @property
    def percent(self) -> int:
        if self.expected <= 0:
            return 100
        return min(100, round(self.completed / self.expected * 100))

    def __repr__(self) -> str:
        return f"GroupProgress({self.group_id}: {self.completed}/{self.expected}, {self.status.value})"


class ProgressAggregator:
    """Recomputes group state from the store after each terminal capture."""

    def __init__(
        self,
        store: CaptureStore,
        publisher: ProgressPublisher,
        enqueue: Optional[JobEnqueuer] = None,
        clear_grace_seconds: float = 3.0,
    ):
        """Initialize aggregator.

        Args:
            store: Capture record store
            publisher: Progress publisher for owner channels
            enqueue: Job enqueue callable used for chained auto-scroll jobs
            clear_grace_seconds: Delay before the group-progress-clear event
        """
        self.store = store
        self.publisher = publisher
        self.enqueue = enqueue
        self.clear_grace_seconds = clear_grace_seconds

        self._group_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._clear_tasks: Set[asyncio.Task] = set()

    async def on_capture_terminal(self, capture: CaptureRecord) -> Optional[GroupProgress]:
        """Update the group of a capture that just reached a terminal state.

        Returns:
            The group's progress, or None for captures outside any group
        """
        if not capture.group_id:
            return None

        async with self._group_locks[capture.group_id]:
            return await self._aggregate(capture)

    async def _aggregate(self, capture: CaptureRecord) -> GroupProgress:
        group = await self.store.get_group(capture.group_id)
        completed = await self.store.count_terminal_captures(group.id)
        expected = group.expected_total
        status = GroupStatus(group.status)

        if completed < expected:
            if status == GroupStatus.PENDING and await self.store.mark_group_processing(group.id):
                status = GroupStatus.PROCESSING
            progress = GroupProgress(group.id, completed, expected, status)
            await self._publish(group.owner_id, progress, f"Captured {completed} of {expected}")
            return progress

        final_status = await self._final_status(group.id, completed)
        finalized_now = await self.store.finalize_group(group.id, final_status)
        if finalized_now:
            status = final_status

        progress = GroupProgress(group.id, completed, expected, status, finalized_now)
        await self._publish(group.owner_id, progress, f"Captured {completed} of {expected}")

        if finalized_now:
            logger.info(f"Group {group.id} {final_status.value} with {completed}/{expected} captures")
            if final_status == GroupStatus.COMPLETED:
                await self._chain_auto_scroll(group, capture)
            self._schedule_clear(group.owner_id, group.id)

        return progress

    async def _final_status(self, group_id: str, terminal_count: int) -> GroupStatus:
        counts = await self.store.count_captures_by_status(group_id)
        if terminal_count > 0 and counts.get(CaptureStatus.FAILED.value, 0) == terminal_count:
            return GroupStatus.FAILED
        return GroupStatus.COMPLETED

    async def _chain_auto_scroll(self, group, capture: CaptureRecord) -> None:
        if group.kind != GroupKind.FRAME.value or capture.kind == CaptureKind.SCROLL.value:
            return

        auto_scroll = group.params.get('auto_scroll')
        if not auto_scroll or not auto_scroll.get('enabled', True):
            return

        if self.enqueue is None:
            logger.warning(f"Group {group.id} requested auto-scroll but no job enqueuer is configured")
            return

        payload = AutoScrollJob(
            group_id=group.id,
            owner_id=group.owner_id,
            url=group.base_url,
            auto_scroll=AutoScrollOptions(**auto_scroll),
            options=CaptureOptions(**group.params.get('options', {})),
        )
        await self.enqueue(JobKind.AUTO_SCROLL, payload)
        logger.info(f"Enqueued auto-scroll job for group {group.id}")

    async def _publish(self, owner_id: str, progress: GroupProgress, stage: str) -> None:
        await self.publisher.group_progress(
            owner_id,
            GroupProgressEvent(
                group_id=progress.group_id,
                completed=progress.completed,
                total=progress.expected,
                progress=progress.percent,
                status=progress.status,
                stage=stage,
            ),
        )

    def _schedule_clear(self, owner_id: str, group_id: str) -> None:
        async def clear_later() -> None:
            await asyncio.sleep(self.clear_grace_seconds)
            await self.publisher.group_progress_clear(owner_id, group_id)

        task = asyncio.create_task(clear_later())
        self._clear_tasks.add(task)
        task.add_done_callback(self._clear_tasks.discard)

    async def publish_summary(self, group_id: str) -> GroupProgress:
        """Publish a group's current progress without changing its state."""
        group = await self.store.get_group(group_id)
        completed = await self.store.count_terminal_captures(group_id)
        progress = GroupProgress(group_id, completed, group.expected_total, GroupStatus(group.status))
        await self._publish(group.owner_id, progress, f"Captured {completed} of {group.expected_total}")
        return progress

    async def aclose(self, wait: bool = False) -> None:
        """Cancel (or with ``wait``, await) pending clear events."""
        tasks = list(self._clear_tasks)
        if not wait:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
