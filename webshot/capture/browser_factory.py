"""Browser session manager for the capture pipeline.

This module provides the BrowserFactory class that owns the single shared
Playwright browser. The engine is launched lazily on first use behind a
once-guard, handed out as a reference-counted ``EngineHandle``, and every
capture gets its own isolated context and page configured from the
capture's options (viewport, scale factor, credentials, cookies, stealth
and cookie prevention).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    async_playwright,
)

from ..config import DEFAULT_LAUNCH_ARGS, DEFAULT_USER_AGENT, BrowserSettings
from ..errors import CaptureFailure, EngineLaunchError
from ..models.capture import BasicAuth, CaptureOptions, CookieSpec
from .privacy import apply_cookie_prevention, apply_stealth

logger = logging.getLogger(__name__)


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class BrowserConfig:
    """Configuration for launching the shared browser."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = True,
        launch_args: Optional[List[str]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        slow_mo: int = 0,
    ):
        """Initialize browser configuration.

        Args:
            engine: Browser engine to use (chromium, firefox, webkit)
            headless: Run browser in headless mode
            launch_args: Command-line arguments passed to the browser
            user_agent: Default User-Agent for new contexts
            slow_mo: Slow down operations by specified milliseconds
        """
        self.engine = engine
        self.headless = headless
        self.launch_args = list(DEFAULT_LAUNCH_ARGS) if launch_args is None else launch_args
        self.user_agent = user_agent
        self.slow_mo = slow_mo

    @classmethod
    def from_settings(cls, settings: BrowserSettings) -> "BrowserConfig":
        return cls(
            engine=settings.engine,
            headless=settings.headless,
            launch_args=list(settings.launch_args),
            user_agent=settings.user_agent,
        )

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        options: Dict[str, Any] = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
        }
        if self.launch_args and self.engine == BrowserEngineType.CHROMIUM:
            options['args'] = self.launch_args
        return options


class PageConfig:
    """Per-capture page configuration."""

    def __init__(
        self,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        device_scale_factor: float = 1.0,
        user_agent: Optional[str] = None,
        basic_auth: Optional[BasicAuth] = None,
        custom_cookies: Optional[List[CookieSpec]] = None,
        stealth_mode: bool = False,
        cookie_prevention: bool = False,
        ignore_https_errors: bool = True,
    ):
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.device_scale_factor = device_scale_factor
        self.user_agent = user_agent
        self.basic_auth = basic_auth
        self.custom_cookies = custom_cookies or []
        self.stealth_mode = stealth_mode
        self.cookie_prevention = cookie_prevention
        self.ignore_https_errors = ignore_https_errors

    @classmethod
    def from_options(cls, options: CaptureOptions, user_agent: Optional[str] = None) -> "PageConfig":
        """Build the page configuration a capture's options call for."""
        return cls(
            viewport_width=options.width,
            viewport_height=options.height,
            device_scale_factor=options.device_scale_factor,
            user_agent=user_agent,
            basic_auth=options.basic_auth,
            custom_cookies=list(options.custom_cookies),
            stealth_mode=options.stealth_mode,
            cookie_prevention=options.cookie_prevention,
        )

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        options: Dict[str, Any] = {
            'viewport': {'width': self.viewport_width, 'height': self.viewport_height},
            'device_scale_factor': self.device_scale_factor,
            'ignore_https_errors': self.ignore_https_errors,
        }

        if self.user_agent:
            options['user_agent'] = self.user_agent

        if self.basic_auth:
            options['http_credentials'] = {
                'username': self.basic_auth.username,
                'password': self.basic_auth.password,
            }

        if self.stealth_mode:
            options['locale'] = 'en-US'
            options['extra_http_headers'] = {'Accept-Language': 'en-US,en;q=0.9'}

        return options


class EngineHandle:
    """Reference-counted handle to the shared browser."""

    def __init__(self, playwright: Playwright, browser: Browser):
        self.playwright = playwright
        self.browser = browser
        self.refcount = 0

    def acquire(self) -> "EngineHandle":
        self.refcount += 1
        return self

    def release(self) -> None:
        if self.refcount <= 0:
            logger.warning("Engine handle released more times than acquired")
            return
        self.refcount -= 1

    @property
    def is_connected(self) -> bool:
        return self.browser.is_connected()


class BrowserFactory:
    """Owner of the shared browser engine and factory for capture pages."""

    def __init__(self, config: Optional[BrowserConfig] = None):
        """Initialize browser factory with configuration.

        Args:
            config: Browser configuration object
        """
        self.config = config or BrowserConfig()
        self._engine: Optional[EngineHandle] = None
        self._launch_lock = asyncio.Lock()
        self._pages_created = 0

    @property
    def is_running(self) -> bool:
        return self._engine is not None and self._engine.is_connected

    async def get_shared_engine(self) -> EngineHandle:
        """Get the shared engine, launching it on first use.

        Concurrent first callers wait on the same launch.

        Raises:
            EngineLaunchError: If the browser cannot be launched
        """
        if self._engine is not None and self._engine.is_connected:
            return self._engine

        async with self._launch_lock:
            if self._engine is not None and self._engine.is_connected:
                return self._engine

            if self._engine is not None:
                logger.warning("Shared browser disconnected, relaunching")
                await self._shutdown_engine()

            self._engine = await self._launch()
            return self._engine

    async def _launch(self) -> EngineHandle:
        logger.info(f"Launching shared browser with engine: {self.config.engine}")
        playwright = None

        try:
            playwright = await async_playwright().start()

            if self.config.engine == BrowserEngineType.FIREFOX:
                browser_type = playwright.firefox
            elif self.config.engine == BrowserEngineType.WEBKIT:
                browser_type = playwright.webkit
            else:
                browser_type = playwright.chromium

            browser = await browser_type.launch(**self.config.to_browser_options())
            logger.info(f"Browser launched successfully (headless={self.config.headless})")
            return EngineHandle(playwright, browser)

        except Exception as e:
            logger.error(f"Failed to launch browser: {e}")
            if playwright is not None:
                await playwright.stop()
            raise EngineLaunchError(f"Failed to launch browser: {e}") from e

    async def new_page(self, engine: EngineHandle, config: PageConfig) -> Page:
        """Create an isolated context and page.

        Raises:
            CaptureFailure: If the context or page cannot be created
        """
        context = None
        try:
            context_options = config.to_context_options()
            if 'user_agent' not in context_options and self.config.user_agent:
                context_options['user_agent'] = self.config.user_agent

            context = await engine.browser.new_context(**context_options)

            if config.stealth_mode:
                await apply_stealth(context)

            if config.cookie_prevention:
                await apply_cookie_prevention(context)

            if config.custom_cookies:
                await context.add_cookies([cookie.to_playwright() for cookie in config.custom_cookies])

            page = await context.new_page()
            self._pages_created += 1
            logger.debug(f"Created page #{self._pages_created}")
            return page

        except Exception as e:
            logger.error(f"Failed to create page: {e}")
            if context is not None:
                await context.close()
            raise CaptureFailure(f"Failed to create page: {e}") from e

    async def close_page(self, page: Page) -> None:
        """Close a page and the context it was created in."""
        try:
            await page.close()
            await page.context.close()
        except Exception as e:
            logger.warning(f"Error closing page: {e}")

    @asynccontextmanager
    async def page(self, config: PageConfig) -> AsyncGenerator[Page, None]:
        """Context manager for a single capture page.

        Args:
            config: Page configuration

        Yields:
            Page instance that will be automatically closed
        """
        engine = (await self.get_shared_engine()).acquire()
        try:
            page = await self.new_page(engine, config)
            try:
                yield page
            finally:
                await self.close_page(page)
        finally:
            engine.release()

    async def health_check(self) -> bool:
        """Open and close a blank page on the shared engine."""
        try:
            async with self.page(PageConfig()) as page:
                await page.goto("about:blank")
            return True
        except Exception as e:
            logger.warning(f"Browser health check failed: {e}")
            return False

    async def _shutdown_engine(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return

        try:
            if engine.browser.is_connected():
                await engine.browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")

        try:
            await engine.playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping Playwright: {e}")

    async def stop(self) -> None:
        """Close the shared browser and Playwright."""
        if self._engine is not None and self._engine.refcount > 0:
            logger.warning(f"Stopping browser with {self._engine.refcount} pages still open")

        async with self._launch_lock:
            await self._shutdown_engine()

        logger.info("Browser factory stopped")
