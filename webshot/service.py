"""Capture pipeline service.

``CapturePipeline`` wires the record store, asset storage, notification
channel, browser factory, capture components and the job scheduler into one
object, and exposes the request operations collaborators use to create
capture records and enqueue the jobs that fill them.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

from .capture.browser_factory import BrowserConfig, BrowserFactory
from .capture.executor import CaptureExecutor, CaptureExecutorConfig
from .capture.scroller import AutoScroller
from .config import WebshotSettings, load_settings
from .crawler import CrawlConfig, Crawler
from .errors import JobValidationError
from .models.capture import AutoScrollOptions, CaptureKind, CaptureOptions, GroupKind, validate_http_url
from .models.jobs import (
    MAX_FRAME_DELAY_SECONDS,
    CaptureJob,
    CrawlBatchJob,
    CrawlJob,
    FrameCaptureJob,
    JobKind,
)
from .persistence.database import DatabaseConfig
from .persistence.models import CaptureGroupRecord, CaptureRecord
from .persistence.storage import AssetStore, LocalAssetStore
from .persistence.store import CaptureStore
from .progress.aggregator import ProgressAggregator
from .progress.notifications import (
    InMemoryNotificationChannel,
    NotificationChannel,
    ProgressPublisher,
    RedisNotificationChannel,
)
from .scheduling.dispatch import JobScheduler
from .scheduling.handlers import CaptureJobHandlers

logger = logging.getLogger(__name__)


def create_notification_channel(settings: WebshotSettings) -> NotificationChannel:
    """Create the notification channel selected in settings."""
    if settings.notifications.backend == 'redis':
        return RedisNotificationChannel(settings.notifications.redis_url or "redis://localhost:6379")
    return InMemoryNotificationChannel()


def _checked_url(url: str) -> str:
    try:
        return validate_http_url(url)
    except ValueError as e:
        raise JobValidationError(str(e)) from e


def _group_name(prefix: str, url: str) -> str:
    host = urlsplit(url).hostname or url
    return f"{prefix} {host} - {datetime.now().strftime('%Y-%m-%d %H:%M')}"


class CapturePipeline:
    """Facade over the capture job pipeline."""

    def __init__(
        self,
        settings: WebshotSettings,
        store: CaptureStore,
        assets: AssetStore,
        channel: NotificationChannel,
        browser_factory: Optional[BrowserFactory] = None,
    ):
        """Initialize pipeline components.

        Args:
            settings: Pipeline settings
            store: Capture record store
            assets: Asset storage for images and thumbnails
            channel: Transport for progress events
            browser_factory: Shared engine owner (built from settings if omitted)
        """
        self.settings = settings
        self.store = store
        self.assets = assets
        self.channel = channel
        self.publisher = ProgressPublisher(channel)
        self.browser_factory = browser_factory or BrowserFactory(BrowserConfig.from_settings(settings.browser))

        self.executor = CaptureExecutor(
            self.browser_factory,
            store,
            assets,
            self.publisher,
            CaptureExecutorConfig.from_settings(settings),
        )
        self.crawler = Crawler(
            self.browser_factory,
            CrawlConfig.from_settings(settings.crawl, user_agent=settings.browser.user_agent),
        )
        self.scroller = AutoScroller(settings.capture.auto_scroll_max_attempts)

        self.scheduler = JobScheduler.from_settings(store, settings.scheduler)
        self.aggregator = ProgressAggregator(
            store,
            self.publisher,
            enqueue=self.scheduler.enqueue,
            clear_grace_seconds=settings.capture.group_clear_grace_seconds,
        )
        self.handlers = CaptureJobHandlers(
            self.executor,
            self.crawler,
            self.scroller,
            self.aggregator,
            store,
            self.publisher,
        )
        for kind, handler in self.handlers.as_mapping().items():
            self.scheduler.register(kind, handler)

    @classmethod
    def from_settings(cls, settings: Optional[WebshotSettings] = None) -> "CapturePipeline":
        """Build a pipeline with the database, storage and channel from settings."""
        settings = settings or load_settings()
        store = CaptureStore(DatabaseConfig(url=settings.database_url))
        assets = LocalAssetStore(settings.asset_root)
        return cls(settings, store, assets, create_notification_channel(settings))

    async def init_db(self) -> None:
        """Create tables that do not exist yet."""
        await self.store.create_tables()

    async def start(self) -> None:
        """Start dispatching queued jobs."""
        await self.scheduler.start()

    async def stop(self) -> None:
        """Drain in-flight jobs and release every resource."""
        await self.scheduler.stop()
        await self.aggregator.aclose()
        await self.browser_factory.stop()
        await self.channel.close()
        await self.store.close()

    async def run_until_idle(self, timeout: Optional[float] = None) -> None:
        await self.scheduler.run_until_idle(timeout)

    async def request_capture(
        self,
        owner_id: str,
        url: str,
        options: Optional[CaptureOptions] = None,
        project_id: Optional[str] = None,
    ) -> CaptureRecord:
        """Create a pending single capture and enqueue its job."""
        url = _checked_url(url)
        options = options or CaptureOptions()

        capture = await self.store.create_capture(
            owner_id=owner_id,
            url=url,
            kind=CaptureKind.SINGLE.value,
            project_id=project_id,
        )
        await self.scheduler.enqueue(
            JobKind.CAPTURE,
            CaptureJob(capture_id=capture.id, owner_id=owner_id, url=url, options=options),
        )
        return capture

    async def request_frames(
        self,
        owner_id: str,
        url: str,
        time_frames: Sequence[float],
        options: Optional[CaptureOptions] = None,
        auto_scroll: Optional[AutoScrollOptions] = None,
        project_id: Optional[str] = None,
    ) -> CaptureGroupRecord:
        """Create a frame group with one capture per delay and enqueue the frames.

        Args:
            owner_id: Owner of the group and its captures
            url: Page to capture
            time_frames: Delays in seconds after load, one frame each
            options: Capture options shared by all frames
            auto_scroll: Optional auto-scroll run after all frames finish
            project_id: Optional project reference

        Returns:
            The created group

        Raises:
            JobValidationError: If the URL or the time frames are invalid
        """
        url = _checked_url(url)
        if not time_frames:
            raise JobValidationError("At least one time frame is required")
        for delay in time_frames:
            if delay < 0 or delay > MAX_FRAME_DELAY_SECONDS:
                raise JobValidationError(
                    f"Time frame {delay}s outside 0..{MAX_FRAME_DELAY_SECONDS}s"
                )

        options = options or CaptureOptions()
        if auto_scroll is not None and not auto_scroll.enabled:
            auto_scroll = None

        group = await self.store.create_group(
            owner_id=owner_id,
            kind=GroupKind.FRAME.value,
            name=_group_name("Frame Screenshots of", url),
            base_url=url,
            expected_total=len(time_frames),
            params={
                'time_frames': list(time_frames),
                'options': options.model_dump(mode='json'),
                'auto_scroll': auto_scroll.model_dump(mode='json') if auto_scroll else None,
            },
            project_id=project_id,
        )

        total = len(time_frames)
        for index, delay in enumerate(time_frames):
            capture = await self.store.create_capture(
                owner_id=owner_id,
                url=url,
                kind=CaptureKind.FRAME.value,
                group_id=group.id,
                metadata={'frame_delay': delay, 'frame_index': index + 1, 'total_frames': total},
                project_id=project_id,
            )
            await self.scheduler.enqueue(
                JobKind.FRAME_CAPTURE,
                FrameCaptureJob(
                    capture_id=capture.id,
                    owner_id=owner_id,
                    url=url,
                    group_id=group.id,
                    frame_delay=delay,
                    frame_index=index + 1,
                    total_frames=total,
                    options=options,
                    auto_scroll=auto_scroll,
                ),
            )

        logger.info(f"Requested {total} frames of {url} in group {group.id}")
        return group

    async def request_crawl(
        self,
        owner_id: str,
        base_url: str,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        project_id: Optional[str] = None,
    ) -> CaptureGroupRecord:
        """Create a crawl group and enqueue URL discovery.

        Discovered URLs are stored in the group's parameters and announced
        with a ``crawl-discovered`` event; nothing is captured until
        ``select_crawl_urls`` is called.
        """
        base_url = _checked_url(base_url)
        max_depth = max_depth or self.settings.crawl.max_depth
        max_pages = max_pages or self.settings.crawl.max_pages

        group = await self.store.create_group(
            owner_id=owner_id,
            kind=GroupKind.CRAWL.value,
            name=_group_name("Crawl of", base_url),
            base_url=base_url,
            expected_total=0,
            params={'max_depth': max_depth, 'max_pages': max_pages},
            project_id=project_id,
        )
        await self.scheduler.enqueue(
            JobKind.CRAWL,
            CrawlJob(
                owner_id=owner_id,
                base_url=base_url,
                group_id=group.id,
                max_depth=max_depth,
                max_pages=max_pages,
            ),
        )
        return group

    async def select_crawl_urls(
        self,
        group_id: str,
        urls: Sequence[str],
        options: Optional[CaptureOptions] = None,
    ) -> List[CaptureRecord]:
        """Create pending crawl-item captures for ``urls`` and enqueue the batch.

        Raises:
            RecordNotFound: If the group does not exist
            JobValidationError: If the group is not a crawl group or no
                valid URL was given
        """
        group = await self.store.get_group(group_id)
        if group.kind != GroupKind.CRAWL.value:
            raise JobValidationError(f"Group {group_id} is not a crawl group")
        if not urls:
            raise JobValidationError("At least one URL must be selected")

        urls = [_checked_url(url) for url in urls]
        options = options or CaptureOptions()

        captures = []
        for url in urls:
            captures.append(await self.store.create_capture(
                owner_id=group.owner_id,
                url=url,
                kind=CaptureKind.CRAWL_ITEM.value,
                group_id=group_id,
                project_id=group.project_id,
            ))

        await self.store.increment_expected_total(group_id, len(captures))
        await self.store.update_group_params(group_id, {
            'selected_urls': urls,
            'options': options.model_dump(mode='json'),
        })
        await self.scheduler.enqueue(
            JobKind.CRAWL_BATCH,
            CrawlBatchJob(group_id=group_id, owner_id=group.owner_id, urls=urls, options=options),
        )

        logger.info(f"Selected {len(urls)} URLs for capture in crawl group {group_id}")
        return captures
