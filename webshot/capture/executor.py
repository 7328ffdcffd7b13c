"""Capture executor: the multi-stage protocol behind every capture job.

This module provides the CaptureExecutor class that takes a pending capture
record through browser acquisition, navigation, optional interactions,
rasterization, thumbnailing and persistence, emitting monotonic progress
checkpoints along the way and leaving the record in exactly one terminal
state.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from playwright.async_api import Page

from ..config import WebshotSettings
from ..errors import InvalidStatusTransition
from ..models.capture import CaptureKind, CaptureOptions, CaptureProgressEvent, CaptureStatus, TriggerSelector
from ..persistence.models import CaptureRecord
from ..persistence.storage import AssetStore, capture_asset_dir
from ..persistence.store import CaptureStore
from ..progress.notifications import ProgressPublisher
from .browser_factory import BrowserFactory, PageConfig
from .imaging import image_size, make_thumbnail
from .interactions import FormAutomation, HumanPointer, TriggerSequence
from .page_session import PageSession, PageSessionConfig

logger = logging.getLogger(__name__)


IMAGE_FILENAME = "full.png"
THUMBNAIL_FILENAME = "thumbnail.png"


class Stage:
    """Progress checkpoints of a capture (percent, label)."""
    INITIALIZING = (0, "Initializing browser...")
    BROWSER_READY = (10, "Browser ready, creating page...")
    CONFIGURING = (20, "Configuring page settings...")
    NAVIGATING = (30, "Navigating to {url}...")
    FALLBACK = (35, "Retrying with faster loading strategy...")
    FRAME_DELAY = (40, "Waiting {delay}s for frame timing...")
    LOADED = (60, "Page loaded, waiting for content...")
    INTERACTING = (65, "Running interactions...")
    CAPTURING = (70, "Capturing screenshot...")
    THUMBNAIL = (85, "Generating thumbnail...")
    COMPLETED = (100, "Screenshot completed!")


class CaptureExecutorConfig:
    """Configuration for the capture executor."""

    def __init__(
        self,
        session_config: Optional[PageSessionConfig] = None,
        thumbnail_size: Tuple[int, int] = (300, 200),
        user_agent: Optional[str] = None,
    ):
        """Initialize executor configuration.

        Args:
            session_config: Navigation configuration for each page
            thumbnail_size: Thumbnail width and height in pixels
            user_agent: User-Agent override for capture pages
        """
        self.session_config = session_config or PageSessionConfig()
        self.thumbnail_size = thumbnail_size
        self.user_agent = user_agent

    @classmethod
    def from_settings(cls, settings: WebshotSettings) -> "CaptureExecutorConfig":
        return cls(
            session_config=PageSessionConfig.from_settings(settings.capture),
            thumbnail_size=(settings.capture.thumbnail_width, settings.capture.thumbnail_height),
            user_agent=settings.browser.user_agent,
        )


class _ProgressReporter:
    """Emits monotonic capture-progress events for one capture."""

    def __init__(self, publisher: ProgressPublisher, capture: CaptureRecord):
        self.publisher = publisher
        self.capture = capture
        self.progress = -1

    async def report(self, stage: Tuple[int, str], **fmt: Any) -> None:
        percent, label = stage
        if percent < self.progress:
            return
        self.progress = percent
        await self.publisher.capture_progress(
            self.capture.owner_id,
            CaptureProgressEvent(
                capture_id=self.capture.id,
                group_id=self.capture.group_id,
                progress=percent,
                stage=label.format(**fmt),
                status=CaptureStatus.COMPLETED if percent == 100 else CaptureStatus.PROCESSING,
            ),
        )

    async def failed(self, error: str) -> None:
        await self.publisher.capture_progress(
            self.capture.owner_id,
            CaptureProgressEvent(
                capture_id=self.capture.id,
                group_id=self.capture.group_id,
                progress=max(self.progress, 0),
                stage="Screenshot failed",
                status=CaptureStatus.FAILED,
                error=error,
            ),
        )


class CaptureExecutor:
    """Runs the capture protocol for individual capture records."""

    def __init__(
        self,
        browser_factory: BrowserFactory,
        store: CaptureStore,
        assets: AssetStore,
        publisher: ProgressPublisher,
        config: Optional[CaptureExecutorConfig] = None,
    ):
        self.browser_factory = browser_factory
        self.store = store
        self.assets = assets
        self.publisher = publisher
        self.config = config or CaptureExecutorConfig()

        self._stats = {
            'captures_started': 0,
            'captures_completed': 0,
            'captures_failed': 0,
            'derived_captures': 0,
        }

    def page_config(self, options: CaptureOptions) -> PageConfig:
        return PageConfig.from_options(options, user_agent=self.config.user_agent)

    async def execute(
        self,
        capture: CaptureRecord,
        options: CaptureOptions,
        frame_delay_s: Optional[float] = None,
    ) -> CaptureRecord:
        """Capture ``capture.url`` into the record.

        Args:
            capture: Pending capture record
            options: Capture options
            frame_delay_s: Seconds to wait after load (frame captures)

        Returns:
            The completed capture record

        Raises:
            InvalidStatusTransition: If the capture is not pending
            Exception: Whatever made the capture fail, after the record has
                been marked failed
        """
        capture = await self.store.mark_processing(capture.id)
        self._stats['captures_started'] += 1
        progress = _ProgressReporter(self.publisher, capture)
        logger.info(f"Capturing {capture.url} (capture {capture.id}, kind {capture.kind})")

        try:
            await progress.report(Stage.INITIALIZING)
            await self.browser_factory.get_shared_engine()
            await progress.report(Stage.BROWSER_READY)

            async with self.browser_factory.page(self.page_config(options)) as page:
                await progress.report(Stage.CONFIGURING)

                session = PageSession(
                    page,
                    self.config.session_config,
                    on_fallback=lambda: progress.report(Stage.FALLBACK),
                )
                await progress.report(Stage.NAVIGATING, url=capture.url)
                render = await session.render(capture.url, options)

                if frame_delay_s:
                    await progress.report(Stage.FRAME_DELAY, delay=frame_delay_s)
                    await page.wait_for_timeout(frame_delay_s * 1000)

                await progress.report(Stage.LOADED)

                if capture.group_id is None and options.has_interactions:
                    await progress.report(Stage.INTERACTING)
                    await self._run_interactions(page, capture, options)

                await progress.report(Stage.CAPTURING)
                raw = await self.rasterize(page, options.full_page)

                await progress.report(Stage.THUMBNAIL)
                completed = await self._persist(capture, raw, render.title)

        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"Capture {capture.id} of {capture.url} failed: {message}")
            await self._mark_failed(capture.id, message)
            await progress.failed(message)
            self._stats['captures_failed'] += 1
            raise

        await progress.report(Stage.COMPLETED)
        self._stats['captures_completed'] += 1
        logger.info(f"Capture {capture.id} completed ({completed.width}x{completed.height})")
        return completed

    async def rasterize(self, page: Page, full_page: bool) -> bytes:
        """Screenshot the whole document or only the current viewport."""
        return await page.screenshot(full_page=full_page, type="png")

    async def capture_derived(
        self,
        page: Page,
        owner_id: str,
        kind: str,
        metadata: Dict[str, Any],
        full_page: bool,
        group_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        url: Optional[str] = None,
        grows_group: bool = False,
    ) -> CaptureRecord:
        """Create, rasterize and complete a capture of the page's current state.

        With ``grows_group`` the group's expected total is raised once the
        record exists, for members added after the group was planned.
        """
        capture = await self.store.create_capture(
            owner_id=owner_id,
            url=url or page.url,
            kind=kind,
            group_id=group_id,
            parent_id=parent_id,
            metadata=metadata,
        )
        if grows_group and group_id:
            await self.store.increment_expected_total(group_id)
        capture = await self.store.mark_processing(capture.id)

        try:
            raw = await self.rasterize(page, full_page)
            title = await page.title()
            completed = await self._persist(capture, raw, title)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"Derived capture {capture.id} failed: {message}")
            await self._mark_failed(capture.id, message)
            raise

        self._stats['derived_captures'] += 1
        return completed

    async def capture_scroll_frame(
        self,
        page: Page,
        owner_id: str,
        group_id: str,
        url: str,
        scroll_index: int,
        scroll_position: float,
        scroll_type: str,
    ) -> CaptureRecord:
        """Capture the current viewport as one step of an auto-scroll run."""
        return await self.capture_derived(
            page,
            owner_id=owner_id,
            kind=CaptureKind.SCROLL.value,
            group_id=group_id,
            url=url,
            full_page=False,
            metadata={
                'scroll_index': scroll_index,
                'scroll_position': scroll_position,
                'scroll_type': scroll_type,
                'is_auto_scroll': True,
            },
            grows_group=True,
        )

    async def _run_interactions(self, page: Page, capture: CaptureRecord, options: CaptureOptions) -> None:
        pointer = HumanPointer(page)

        if options.trigger_selectors:
            async def on_trigger(index: int, trigger: TriggerSelector) -> None:
                await self.capture_derived(
                    page,
                    owner_id=capture.owner_id,
                    kind=CaptureKind.SINGLE.value,
                    parent_id=capture.id,
                    full_page=options.full_page,
                    metadata={
                        'trigger_index': index,
                        'trigger_selector': trigger.selector,
                        'trigger_description': trigger.description,
                    },
                )

            await TriggerSequence(page, on_trigger, pointer).run(options.trigger_selectors)

        if options.form_steps:
            async def on_form_screenshot(index: int, phase: str) -> None:
                await self.capture_derived(
                    page,
                    owner_id=capture.owner_id,
                    kind=CaptureKind.SINGLE.value,
                    parent_id=capture.id,
                    full_page=options.full_page,
                    metadata={'form_step': index, 'form_phase': phase},
                )

            await FormAutomation(page, on_form_screenshot, pointer).run(options.form_steps)

    async def _persist(self, capture: CaptureRecord, raw: bytes, title: Optional[str]) -> CaptureRecord:
        width, height = image_size(raw)
        thumb_width, thumb_height = self.config.thumbnail_size
        thumbnail = make_thumbnail(raw, thumb_width, thumb_height)

        asset_dir = capture_asset_dir(capture.id, capture.group_id)
        image_ref = await self.assets.put(raw, f"{asset_dir}/{IMAGE_FILENAME}", content_type="image/png")
        thumb_ref = await self.assets.put(thumbnail, f"{asset_dir}/{THUMBNAIL_FILENAME}", content_type="image/png")

        return await self.store.mark_completed(
            capture.id,
            image_path=image_ref.path,
            thumbnail_path=thumb_ref.path,
            width=width,
            height=height,
            file_size=image_ref.size_bytes,
            title=title or None,
            captured_at=datetime.now(timezone.utc),
        )

    async def _mark_failed(self, capture_id: str, message: str) -> None:
        try:
            await self.store.mark_failed(capture_id, message)
        except InvalidStatusTransition:
            logger.warning(f"Capture {capture_id} already terminal, not marking failed")

    def get_stats(self) -> Dict[str, int]:
        """Get executor statistics."""
        return dict(self._stats)
