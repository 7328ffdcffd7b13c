"""Unit tests for the shared browser factory."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from webshot.capture.browser_factory import (
    BrowserConfig,
    BrowserEngineType,
    BrowserFactory,
    PageConfig,
)
from webshot.config import BrowserSettings
from webshot.errors import CaptureFailure, EngineLaunchError
from webshot.models.capture import BasicAuth, CaptureOptions, CookieSpec


def _playwright_stack():
    """Playwright, browser, context and page doubles wired together."""
    page = MagicMock()
    page.close = AsyncMock()

    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.add_init_script = AsyncMock()
    context.add_cookies = AsyncMock()
    context.route = AsyncMock()
    context.close = AsyncMock()
    page.context = context

    browser = MagicMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.firefox.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright, browser, context, page


@pytest.fixture
def stack():
    starter, playwright, browser, context, page = _playwright_stack()
    with patch("webshot.capture.browser_factory.async_playwright", return_value=starter) as launcher:
        yield {
            'launcher': launcher,
            'playwright': playwright,
            'browser': browser,
            'context': context,
            'page': page,
        }


class TestBrowserConfig:
    """Tests for launch and context configuration."""

    def test_chromium_launch_args(self):
        options = BrowserConfig().to_browser_options()

        assert options['headless'] is True
        assert "--no-sandbox" in options['args']

    def test_firefox_ignores_chromium_args(self):
        options = BrowserConfig(engine=BrowserEngineType.FIREFOX).to_browser_options()
        assert 'args' not in options

    def test_from_settings(self):
        config = BrowserConfig.from_settings(BrowserSettings(engine="webkit", headless=False, launch_args=[]))

        assert config.engine == "webkit"
        assert config.headless is False
        assert config.launch_args == []

    def test_page_config_from_options(self):
        options = CaptureOptions(
            width=1280,
            height=800,
            device_scale_factor=2,
            basic_auth=BasicAuth(username="admin", password="secret"),
            stealth_mode=True,
        )
        context_options = PageConfig.from_options(options, user_agent="Bot/1.0").to_context_options()

        assert context_options['viewport'] == {'width': 1280, 'height': 800}
        assert context_options['device_scale_factor'] == 2
        assert context_options['user_agent'] == "Bot/1.0"
        assert context_options['http_credentials'] == {'username': "admin", 'password': "secret"}
        assert context_options['locale'] == "en-US"


class TestSharedEngine:
    """Tests for lazy, once-only engine launch."""

    async def test_launch_once(self, stack):
        factory = BrowserFactory()

        first = await factory.get_shared_engine()
        second = await factory.get_shared_engine()

        assert first is second
        assert stack['launcher'].call_count == 1
        assert factory.is_running

    async def test_concurrent_first_use(self, stack):
        factory = BrowserFactory()

        engines = await asyncio.gather(*(factory.get_shared_engine() for _ in range(5)))

        assert len({id(e) for e in engines}) == 1
        stack['playwright'].chromium.launch.assert_awaited_once()

    async def test_relaunch_after_disconnect(self, stack):
        factory = BrowserFactory()
        await factory.get_shared_engine()

        stack['browser'].is_connected.return_value = False
        await factory.get_shared_engine()

        assert stack['playwright'].chromium.launch.await_count == 2

    async def test_launch_failure(self, stack):
        stack['playwright'].chromium.launch.side_effect = RuntimeError("missing executable")
        factory = BrowserFactory()

        with pytest.raises(EngineLaunchError, match="missing executable"):
            await factory.get_shared_engine()

        stack['playwright'].stop.assert_awaited_once()
        assert factory.is_running is False

    async def test_stop(self, stack):
        factory = BrowserFactory()
        await factory.get_shared_engine()
        await factory.stop()

        stack['browser'].close.assert_awaited_once()
        stack['playwright'].stop.assert_awaited_once()
        assert factory.is_running is False


class TestCapturePages:
    """Tests for isolated per-capture pages."""

    async def test_page_context_manager(self, stack):
        factory = BrowserFactory()

        async with factory.page(PageConfig()) as page:
            assert page is stack['page']
            assert factory._engine.refcount == 1

        assert factory._engine.refcount == 0
        stack['page'].close.assert_awaited_once()
        stack['context'].close.assert_awaited_once()

    async def test_default_user_agent_applied(self, stack):
        factory = BrowserFactory(BrowserConfig(user_agent="Webshot/1.0"))

        async with factory.page(PageConfig()):
            pass

        assert stack['browser'].new_context.await_args.kwargs['user_agent'] == "Webshot/1.0"

    async def test_privacy_and_cookies(self, stack):
        factory = BrowserFactory()
        config = PageConfig(
            stealth_mode=True,
            cookie_prevention=True,
            custom_cookies=[CookieSpec(name="consent", value="yes", domain="example.com")],
        )

        async with factory.page(config):
            pass

        # stealth script, storage block script, banner CSS
        assert stack['context'].add_init_script.await_count == 3
        stack['context'].route.assert_awaited_once()
        cookies = stack['context'].add_cookies.await_args.args[0]
        assert cookies[0]['name'] == "consent"

    async def test_page_creation_failure(self, stack):
        stack['context'].new_page.side_effect = RuntimeError("target closed")
        factory = BrowserFactory()

        with pytest.raises(CaptureFailure, match="target closed"):
            async with factory.page(PageConfig()):
                pass

        stack['context'].close.assert_awaited_once()
        assert factory._engine.refcount == 0

    async def test_health_check(self, stack):
        factory = BrowserFactory()
        stack['page'].goto = AsyncMock()

        assert await factory.health_check() is True
        stack['page'].goto.assert_awaited_once_with("about:blank")
