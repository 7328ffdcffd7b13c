"""Unit tests for group progress aggregation."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from webshot.models.capture import AutoScrollOptions, CaptureKind, GroupKind, GroupStatus
from webshot.models.jobs import AutoScrollJob, JobKind
from webshot.progress.aggregator import GroupProgress, ProgressAggregator
from webshot.progress.notifications import ProgressEventType


OWNER = "user-1"
BASE_URL = "https://example.com/"


@pytest.fixture
def enqueue():
    return AsyncMock()


@pytest_asyncio.fixture
async def aggregator(store, publisher, enqueue):
    aggregator = ProgressAggregator(store, publisher, enqueue=enqueue, clear_grace_seconds=0)
    yield aggregator
    await aggregator.aclose()


async def _frame_group(store, time_frames=(0, 5, 10), auto_scroll=None):
    group = await store.create_group(
        owner_id=OWNER,
        kind=GroupKind.FRAME.value,
        name="Frame Screenshots of example.com",
        base_url=BASE_URL,
        expected_total=len(time_frames),
        params={
            'time_frames': list(time_frames),
            'options': {'width': 1280, 'height': 720},
            'auto_scroll': auto_scroll,
        },
    )
    captures = []
    for index, delay in enumerate(time_frames):
        captures.append(await store.create_capture(
            owner_id=OWNER, url=BASE_URL, kind=CaptureKind.FRAME.value, group_id=group.id,
            metadata={'frame_delay': delay, 'frame_index': index + 1, 'total_frames': len(time_frames)},
        ))
    return group, captures


async def _complete(store, capture):
    await store.mark_processing(capture.id)
    return await store.mark_completed(
        capture.id,
        image_path=f"collections/{capture.group_id}/{capture.id}/full.png",
        thumbnail_path=f"collections/{capture.group_id}/{capture.id}/thumbnail.png",
        width=1280, height=720, file_size=100,
    )


class TestGroupProgress:
    """Tests for progress snapshots."""

    def test_percent(self):
        assert GroupProgress("g", 1, 3, GroupStatus.PROCESSING).percent == 33
        assert GroupProgress("g", 2, 3, GroupStatus.PROCESSING).percent == 67
        assert GroupProgress("g", 0, 0, GroupStatus.COMPLETED).percent == 100
        assert GroupProgress("g", 5, 3, GroupStatus.COMPLETED).percent == 100


class TestAggregation:
    """Tests for recounting and finalization."""

    async def test_ungrouped_capture_ignored(self, aggregator, store, channel):
        capture = await store.create_capture(owner_id=OWNER, url=BASE_URL, kind=CaptureKind.SINGLE.value)
        await store.mark_failed(capture.id, "boom")

        assert await aggregator.on_capture_terminal(capture) is None
        assert channel.events() == []

    async def test_frames_without_auto_scroll(self, aggregator, store, channel, enqueue):
        group, captures = await _frame_group(store)

        snapshots = []
        for capture in captures:
            snapshots.append(await aggregator.on_capture_terminal(await _complete(store, capture)))

        assert [s.percent for s in snapshots] == [33, 67, 100]
        assert [s.status for s in snapshots] == [
            GroupStatus.PROCESSING, GroupStatus.PROCESSING, GroupStatus.COMPLETED,
        ]
        assert snapshots[-1].finalized_now is True

        finalized = await store.get_group(group.id)
        assert finalized.status == GroupStatus.COMPLETED.value
        assert finalized.finalized_at is not None
        enqueue.assert_not_awaited()

        events = channel.events(event=ProgressEventType.GROUP_PROGRESS)
        assert [e['progress'] for e in events] == [33, 67, 100]
        assert events[-1]['stage'] == "Captured 3 of 3"

        await aggregator.aclose(wait=True)
        cleared = channel.events(event=ProgressEventType.GROUP_PROGRESS_CLEAR)
        assert len(cleared) == 1
        assert cleared[0]['group_id'] == group.id

    async def test_frames_with_auto_scroll_enqueue_once(self, aggregator, store, enqueue):
        auto_scroll = AutoScrollOptions(selector=".scroll-area", step_size=300).model_dump()
        group, captures = await _frame_group(store, auto_scroll=auto_scroll)

        for capture in captures:
            await aggregator.on_capture_terminal(await _complete(store, capture))

        enqueue.assert_awaited_once()
        kind, payload = enqueue.await_args.args
        assert kind == JobKind.AUTO_SCROLL
        assert isinstance(payload, AutoScrollJob)
        assert payload.group_id == group.id
        assert payload.url == BASE_URL
        assert payload.auto_scroll.selector == ".scroll-area"
        assert payload.options.width == 1280

        # Scroll frames grow the finalized group without re-finalizing it
        await store.increment_expected_total(group.id)
        scroll = await store.create_capture(
            owner_id=OWNER, url=BASE_URL, kind=CaptureKind.SCROLL.value, group_id=group.id,
            metadata={'scroll_index': 1},
        )
        progress = await aggregator.on_capture_terminal(await _complete(store, scroll))

        assert progress.completed == 4
        assert progress.expected == 4
        assert progress.finalized_now is False
        enqueue.assert_awaited_once()

    async def test_duplicate_report_does_not_refinalize(self, aggregator, store, enqueue):
        group, captures = await _frame_group(store, time_frames=(0,), auto_scroll={'enabled': True})
        completed = await _complete(store, captures[0])

        first = await aggregator.on_capture_terminal(completed)
        second = await aggregator.on_capture_terminal(completed)

        assert first.finalized_now is True
        assert second.finalized_now is False
        enqueue.assert_awaited_once()

    async def test_disabled_auto_scroll(self, aggregator, store, enqueue):
        group, captures = await _frame_group(store, time_frames=(0,), auto_scroll={'enabled': False})

        await aggregator.on_capture_terminal(await _complete(store, captures[0]))

        enqueue.assert_not_awaited()

    async def test_all_failed_group_fails(self, aggregator, store, enqueue):
        group, captures = await _frame_group(store, auto_scroll={'enabled': True})

        for capture in captures:
            await aggregator.on_capture_terminal(await store.mark_failed(capture.id, "timeout"))

        assert (await store.get_group(group.id)).status == GroupStatus.FAILED.value
        enqueue.assert_not_awaited()

    async def test_partial_failure_completes(self, aggregator, store):
        group, captures = await _frame_group(store)

        await aggregator.on_capture_terminal(await store.mark_failed(captures[0].id, "timeout"))
        for capture in captures[1:]:
            await aggregator.on_capture_terminal(await _complete(store, capture))

        assert (await store.get_group(group.id)).status == GroupStatus.COMPLETED.value

    async def test_concurrent_reports_finalize_once(self, aggregator, store, enqueue):
        group, captures = await _frame_group(store, auto_scroll={'enabled': True})
        completed = [await _complete(store, capture) for capture in captures]

        results = await asyncio.gather(*(aggregator.on_capture_terminal(c) for c in completed))

        assert sum(1 for r in results if r.finalized_now) == 1
        enqueue.assert_awaited_once()

    async def test_missing_enqueuer(self, store, publisher):
        aggregator = ProgressAggregator(store, publisher, enqueue=None, clear_grace_seconds=0)
        group, captures = await _frame_group(store, time_frames=(0,), auto_scroll={'enabled': True})

        progress = await aggregator.on_capture_terminal(await _complete(store, captures[0]))

        assert progress.finalized_now is True
        await aggregator.aclose()

    async def test_publish_summary(self, aggregator, store, channel):
        group, captures = await _frame_group(store)
        await _complete(store, captures[0])

        progress = await aggregator.publish_summary(group.id)

        assert (progress.completed, progress.expected) == (1, 3)
        assert progress.status == GroupStatus.PENDING
        assert channel.events(event=ProgressEventType.GROUP_PROGRESS)[-1]['completed'] == 1
