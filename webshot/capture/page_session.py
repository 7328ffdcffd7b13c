"""Navigation and rendering control for capture pages.

This module provides the PageSession class that loads a page with a
network-idle strategy (falling back to DOM-ready plus a settle delay),
applies custom CSS/JS at the requested point relative to navigation and
viewport sizing, and stabilizes the page for full-page rasterization.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from ..config import CaptureSettings
from ..errors import NavigationTimeout
from ..models.capture import CaptureOptions
from .privacy import style_injection_script

logger = logging.getLogger(__name__)


class WaitStrategy:
    """Navigation wait strategies, in the order they are tried."""
    NETWORKIDLE = "networkidle"
    DOMCONTENTLOADED = "domcontentloaded"


class InjectionStep:
    """Ordered steps of the page preparation plan."""
    VIEWPORT = "viewport"
    SCRIPT = "script"
    NAVIGATE = "navigate"


def plan_injection(options: CaptureOptions) -> List[str]:
    """Order viewport sizing, custom script injection and navigation.

    Before navigation the script is registered as an init script; after
    navigation it is evaluated in the loaded document. Viewport sizing is
    deferred past navigation only when the script runs after navigation
    but must precede sizing.
    """
    if options.inject_before_navigation:
        if options.inject_before_viewport:
            return [InjectionStep.SCRIPT, InjectionStep.VIEWPORT, InjectionStep.NAVIGATE]
        return [InjectionStep.VIEWPORT, InjectionStep.SCRIPT, InjectionStep.NAVIGATE]

    if options.inject_before_viewport:
        return [InjectionStep.NAVIGATE, InjectionStep.SCRIPT, InjectionStep.VIEWPORT]
    return [InjectionStep.VIEWPORT, InjectionStep.NAVIGATE, InjectionStep.SCRIPT]


UNSTICKY_JS = """
() => {
    let changed = 0;
    for (const el of document.querySelectorAll('body *')) {
        const position = window.getComputedStyle(el).position;
        if (position === 'sticky' || position === 'fixed') {
            el.style.setProperty('position', 'static', 'important');
            changed++;
        }
    }
    return changed;
}
"""

SCROLL_TO_JS = """
(y) => {
    window.scrollTo(0, y);
    window.dispatchEvent(new Event('scroll'));
    window.dispatchEvent(new Event('resize'));
}
"""

PAGE_HEIGHT_JS = "() => Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0)"


class PageSessionConfig:
    """Configuration for page navigation and stabilization."""

    def __init__(
        self,
        navigation_timeout_ms: int = 60000,
        fallback_settle_ms: int = 5000,
        content_settle_ms: int = 2000,
        lazy_load_max_steps: int = 50,
        lazy_load_step_ms: int = 300,
        sticky_settle_ms: int = 500,
    ):
        """Initialize page session configuration.

        Args:
            navigation_timeout_ms: Timeout for each navigation attempt
            fallback_settle_ms: Delay after a DOM-ready fallback navigation
            content_settle_ms: Delay for dynamic content after load
            lazy_load_max_steps: Maximum viewport-height scroll steps
            lazy_load_step_ms: Delay after each lazy-load scroll step
            sticky_settle_ms: Delay after scrolling to the bottom
        """
        self.navigation_timeout_ms = navigation_timeout_ms
        self.fallback_settle_ms = fallback_settle_ms
        self.content_settle_ms = content_settle_ms
        self.lazy_load_max_steps = lazy_load_max_steps
        self.lazy_load_step_ms = lazy_load_step_ms
        self.sticky_settle_ms = sticky_settle_ms

    @classmethod
    def from_settings(cls, settings: CaptureSettings) -> "PageSessionConfig":
        return cls(
            navigation_timeout_ms=settings.navigation_timeout_ms,
            fallback_settle_ms=settings.fallback_settle_ms,
            content_settle_ms=settings.content_settle_ms,
            lazy_load_max_steps=settings.lazy_load_max_steps,
        )


class RenderResult:
    """Outcome of rendering a page."""

    def __init__(self, page: Page, title: str, final_url: str, used_fallback: bool = False):
        self.page = page
        self.title = title
        self.final_url = final_url
        self.used_fallback = used_fallback


class PageSession:
    """Loads and stabilizes one page for capture."""

    def __init__(
        self,
        page: Page,
        config: Optional[PageSessionConfig] = None,
        on_fallback: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """Initialize page session.

        Args:
            page: Playwright page to drive
            config: Navigation configuration
            on_fallback: Awaited when navigation falls back to DOM-ready
        """
        self.page = page
        self.config = config or PageSessionConfig()
        self.on_fallback = on_fallback

    async def render(self, url: str, options: CaptureOptions, timeout_ms: Optional[int] = None) -> RenderResult:
        """Navigate to ``url`` and prepare the page for rasterization.

        Raises:
            NavigationTimeout: If both navigation strategies time out
        """
        timeout_ms = timeout_ms or self.config.navigation_timeout_ms
        used_fallback = False

        if options.custom_css and options.inject_before_navigation:
            await self.page.add_init_script(style_injection_script(options.custom_css))

        for step in plan_injection(options):
            if step == InjectionStep.VIEWPORT:
                await self.page.set_viewport_size({'width': options.width, 'height': options.height})
            elif step == InjectionStep.SCRIPT:
                await self._inject_script(options)
            elif step == InjectionStep.NAVIGATE:
                used_fallback = await self._navigate(url, timeout_ms)

        if options.custom_css and not options.inject_before_navigation:
            await self.page.add_style_tag(content=options.custom_css)

        # Give client-side rendering time to settle
        await self.page.wait_for_timeout(self.config.content_settle_ms)

        if options.full_page:
            await self.prepare_full_page(options)

        title = await self._get_title()
        return RenderResult(self.page, title, self.page.url, used_fallback)

    async def _inject_script(self, options: CaptureOptions) -> None:
        if not options.custom_js:
            return

        if options.inject_before_navigation:
            await self.page.add_init_script(options.custom_js)
        else:
            await self.page.add_script_tag(content=options.custom_js)
        logger.debug("Injected custom script")

    async def _navigate(self, url: str, timeout_ms: int) -> bool:
        """Navigate with network-idle, falling back to DOM-ready.

        Returns:
            True if the fallback strategy was used
        """
        try:
            await self.page.goto(url, wait_until=WaitStrategy.NETWORKIDLE, timeout=timeout_ms)
            logger.debug(f"Navigation completed: {url}")
            return False
        except PlaywrightTimeoutError:
            logger.warning(f"Network idle timeout for {url}, retrying with domcontentloaded")

        if self.on_fallback:
            await self.on_fallback()

        try:
            await self.page.goto(url, wait_until=WaitStrategy.DOMCONTENTLOADED, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            logger.error(f"Navigation to {url} timed out under both strategies")
            raise NavigationTimeout(url, timeout_ms) from e

        await self.page.wait_for_timeout(self.config.fallback_settle_ms)
        return True

    async def prepare_full_page(self, options: CaptureOptions) -> None:
        """Trigger lazy content, then settle or neutralize sticky elements."""
        await self.trigger_lazy_load(options.height)

        if options.unsticky:
            changed = await self.page.evaluate(UNSTICKY_JS)
            logger.debug(f"Made {changed} sticky/fixed elements static")
        else:
            await self.page.evaluate(SCROLL_TO_JS, await self.page.evaluate(PAGE_HEIGHT_JS))
            await self.page.wait_for_timeout(self.config.sticky_settle_ms)

    async def trigger_lazy_load(self, viewport_height: int) -> int:
        """Scroll top to bottom in viewport-height steps, then back to top.

        Returns:
            Number of scroll steps taken
        """
        position = 0
        steps = 0

        while steps < self.config.lazy_load_max_steps:
            page_height = await self.page.evaluate(PAGE_HEIGHT_JS)
            if position >= page_height:
                break

            await self.page.evaluate(SCROLL_TO_JS, position)
            await self.page.wait_for_timeout(self.config.lazy_load_step_ms)
            position += viewport_height
            steps += 1

        await self.page.evaluate(SCROLL_TO_JS, 0)
        logger.debug(f"Lazy-load pass took {steps} steps")
        return steps

    async def _get_title(self) -> str:
        try:
            return await self.page.title()
        except Exception as e:
            logger.debug(f"Failed to get page title: {e}")
            return ""
