"""Job handlers for every capture job kind.

Handlers translate a validated job payload into calls on the capture
executor, crawler and auto-scroller, and report every terminal capture to
the progress aggregator. They never raise for ordinary failures: the
outcome is returned as a ``JobResult``. Only ``EngineLaunchError``
propagates, since no further job can succeed without a browser.
"""

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Tuple

from ..capture.executor import CaptureExecutor
from ..capture.page_session import PageSession
from ..capture.scroller import AutoScroller, ScrollState
from ..crawler import Crawler
from ..errors import EngineLaunchError
from ..models.capture import CaptureKind, CaptureOptions, CaptureStatus
from ..models.jobs import AutoScrollJob, CaptureJob, CrawlBatchJob, CrawlJob, FrameCaptureJob, JobKind, JobResult
from ..persistence.models import CaptureRecord
from ..persistence.store import CaptureStore
from ..progress.aggregator import ProgressAggregator
from ..progress.notifications import ProgressPublisher
from .dispatch import JobHandler

logger = logging.getLogger(__name__)


class CaptureJobHandlers:
    """Handlers bound to one set of pipeline components."""

    def __init__(
        self,
        executor: CaptureExecutor,
        crawler: Crawler,
        scroller: AutoScroller,
        aggregator: ProgressAggregator,
        store: CaptureStore,
        publisher: ProgressPublisher,
    ):
        self.executor = executor
        self.crawler = crawler
        self.scroller = scroller
        self.aggregator = aggregator
        self.store = store
        self.publisher = publisher

    def as_mapping(self) -> Dict[JobKind, JobHandler]:
        """Handler per job kind, for ``JobScheduler``."""
        return {
            JobKind.CAPTURE: self.handle_capture,
            JobKind.FRAME_CAPTURE: self.handle_frame_capture,
            JobKind.CRAWL: self.handle_crawl,
            JobKind.CRAWL_BATCH: self.handle_crawl_batch,
            JobKind.AUTO_SCROLL: self.handle_auto_scroll,
        }

    async def handle_capture(self, job: CaptureJob) -> JobResult:
        return await self._capture_one(job.capture_id, job.options)

    async def handle_frame_capture(self, job: FrameCaptureJob) -> JobResult:
        options = job.options
        if job.is_scroll_capture:
            options = options.model_copy(update={'full_page': False})

        logger.info(f"Capturing frame {job.frame_index}/{job.total_frames} "
                    f"of group {job.group_id} after {job.frame_delay}s")
        return await self._capture_one(job.capture_id, options, frame_delay_s=job.frame_delay)

    async def handle_crawl(self, job: CrawlJob) -> JobResult:
        try:
            urls = await self.crawler.discover(job.base_url, job.max_depth, job.max_pages)
        except EngineLaunchError:
            raise
        except Exception as e:
            logger.error(f"Crawl of {job.base_url} failed: {e}")
            return JobResult.failed(e)

        if job.group_id:
            await self.store.update_group_params(job.group_id, {
                'discovered_urls': urls,
                'max_depth': job.max_depth,
                'max_pages': job.max_pages,
            })

        await self.publisher.crawl_discovered(job.owner_id, job.group_id, job.base_url, urls)
        return JobResult.ok(discovered=len(urls))

    async def handle_crawl_batch(self, job: CrawlBatchJob) -> JobResult:
        captures, skipped = await self._batch_captures(job)
        completed = 0
        failed = 0

        # One page at a time
        for capture in captures:
            result = await self._capture_one(capture.id, job.options)
            if result.success:
                completed += 1
            else:
                failed += 1

        logger.info(f"Crawl batch for group {job.group_id}: {completed} completed, "
                    f"{failed} failed, {skipped} already finished")
        return JobResult.ok(completed=completed, failed=failed, skipped=skipped)

    async def _batch_captures(self, job: CrawlBatchJob) -> Tuple[List[CaptureRecord], int]:
        """Unfinished crawl-item records for the batch URLs, and how many were already terminal.

        Every URL is matched to an existing record of the group whatever its
        status, so a re-run batch never captures a URL twice. Records left
        processing are returned and failed by ``_capture_one``; a record is
        created only for a URL that has none.
        """
        existing: Dict[str, Deque[CaptureRecord]] = defaultdict(deque)
        records = await self.store.list_group_captures(job.group_id, kind=CaptureKind.CRAWL_ITEM.value)
        # Unfinished records first, so a URL selected again runs its new record
        for capture in sorted(records, key=lambda c: c.is_terminal):
            existing[capture.url].append(capture)

        captures: List[CaptureRecord] = []
        created = 0
        skipped = 0
        for url in job.urls:
            if existing[url]:
                capture = existing[url].popleft()
                if capture.is_terminal:
                    skipped += 1
                else:
                    captures.append(capture)
                continue
            captures.append(await self.store.create_capture(
                owner_id=job.owner_id,
                url=url,
                kind=CaptureKind.CRAWL_ITEM.value,
                group_id=job.group_id,
            ))
            created += 1

        if created:
            await self.store.increment_expected_total(job.group_id, created)
        return captures, skipped

    async def handle_auto_scroll(self, job: AutoScrollJob) -> JobResult:
        settings = job.auto_scroll
        if not settings.enabled:
            return JobResult.ok(captured=0)

        options = job.options.model_copy(update={'full_page': False})
        browser_factory = self.executor.browser_factory

        async def on_step(index: int, position: float, state: ScrollState) -> None:
            try:
                capture = await self.executor.capture_scroll_frame(
                    page,
                    owner_id=job.owner_id,
                    group_id=job.group_id,
                    url=job.url,
                    scroll_index=index,
                    scroll_position=position,
                    scroll_type=state.scroll_type,
                )
            except EngineLaunchError:
                raise
            except Exception as e:
                logger.warning(f"Scroll capture {index} of group {job.group_id} failed: {e}")
                await self.aggregator.publish_summary(job.group_id)
                return
            await self.aggregator.on_capture_terminal(capture)

        try:
            async with browser_factory.page(self.executor.page_config(options)) as page:
                await PageSession(page, self.executor.config.session_config).render(job.url, options)
                captured = await self.scroller.run(
                    page,
                    selector=settings.selector,
                    step_size=settings.step_size,
                    interval_ms=settings.interval_ms,
                    max_attempts=settings.max_attempts,
                    on_step=on_step,
                )
        except EngineLaunchError:
            raise
        except Exception as e:
            logger.error(f"Auto-scroll of {job.url} for group {job.group_id} failed: {e}")
            return JobResult.failed(e)

        await self.aggregator.publish_summary(job.group_id)
        return JobResult.ok(captured=captured)

    async def _capture_one(
        self,
        capture_id: str,
        options: CaptureOptions,
        frame_delay_s: Optional[float] = None,
    ) -> JobResult:
        """Execute one capture and report it to its group."""
        capture = await self.store.get_capture(capture_id)
        if capture.status == CaptureStatus.PROCESSING.value:
            # Left processing by an interrupted worker; requeued jobs cannot resume it
            message = "Capture interrupted before completion"
            logger.warning(f"Capture {capture_id} was interrupted, marking failed")
            await self.store.mark_failed(capture_id, message)
            await self._report_terminal(capture_id)
            return JobResult.failed(message)

        try:
            await self.executor.execute(capture, options, frame_delay_s=frame_delay_s)
        except EngineLaunchError:
            await self._report_terminal(capture_id)
            raise
        except Exception as e:
            await self._report_terminal(capture_id)
            return JobResult.failed(e)

        await self._report_terminal(capture_id)
        return JobResult.ok(capture_id=capture_id)

    async def _report_terminal(self, capture_id: str) -> None:
        capture = await self.store.get_capture(capture_id)
        if capture.is_terminal:
            await self.aggregator.on_capture_terminal(capture)
