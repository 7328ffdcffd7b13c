"""Unit tests for page navigation and stabilization."""

from unittest.mock import AsyncMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from webshot.capture.page_session import (
    InjectionStep,
    PageSession,
    PageSessionConfig,
    UNSTICKY_JS,
    WaitStrategy,
    plan_injection,
)
from webshot.errors import NavigationTimeout
from webshot.models.capture import CaptureOptions


@pytest.fixture
def quick_config():
    return PageSessionConfig(
        navigation_timeout_ms=5000,
        fallback_settle_ms=10,
        content_settle_ms=20,
        lazy_load_max_steps=5,
        lazy_load_step_ms=1,
        sticky_settle_ms=1,
    )


def _record_order(page):
    """Record viewport, script and navigation calls in order."""
    calls = []
    page.set_viewport_size.side_effect = lambda *a, **k: calls.append(InjectionStep.VIEWPORT)
    page.add_init_script.side_effect = lambda *a, **k: calls.append(InjectionStep.SCRIPT)
    page.add_script_tag.side_effect = lambda *a, **k: calls.append(InjectionStep.SCRIPT)
    page.goto.side_effect = lambda *a, **k: calls.append(InjectionStep.NAVIGATE)
    return calls


class TestInjectionPlan:
    """Tests for ordering viewport sizing, script injection and navigation."""

    @pytest.mark.parametrize("before_navigation,before_viewport,expected", [
        (True, True, ["script", "viewport", "navigate"]),
        (True, False, ["viewport", "script", "navigate"]),
        (False, True, ["navigate", "script", "viewport"]),
        (False, False, ["viewport", "navigate", "script"]),
    ])
    def test_plan(self, before_navigation, before_viewport, expected):
        options = CaptureOptions(
            inject_before_navigation=before_navigation,
            inject_before_viewport=before_viewport,
        )
        assert plan_injection(options) == expected

    async def test_render_follows_plan(self, fake_page, quick_config):
        calls = _record_order(fake_page)
        options = CaptureOptions(
            custom_js="window.ready = true",
            inject_before_viewport=True,
            full_page=False,
        )

        await PageSession(fake_page, quick_config).render("https://example.com", options)

        assert calls == ["navigate", "script", "viewport"]
        fake_page.add_script_tag.assert_awaited_once_with(content="window.ready = true")
        fake_page.add_init_script.assert_not_awaited()

    async def test_script_before_navigation_is_init_script(self, fake_page, quick_config):
        options = CaptureOptions(custom_js="window.x = 1", inject_before_navigation=True, full_page=False)

        await PageSession(fake_page, quick_config).render("https://example.com", options)

        fake_page.add_init_script.assert_awaited_once_with("window.x = 1")
        fake_page.add_script_tag.assert_not_awaited()

    async def test_css_after_navigation(self, fake_page, quick_config):
        options = CaptureOptions(custom_css="header { display: none }", full_page=False)

        await PageSession(fake_page, quick_config).render("https://example.com", options)

        fake_page.add_style_tag.assert_awaited_once_with(content="header { display: none }")

    async def test_css_before_navigation(self, fake_page, quick_config):
        options = CaptureOptions(custom_css="header { display: none }", inject_before_navigation=True,
                                 full_page=False)

        await PageSession(fake_page, quick_config).render("https://example.com", options)

        fake_page.add_init_script.assert_awaited_once()
        assert "header { display: none }" in fake_page.add_init_script.await_args.args[0]
        fake_page.add_style_tag.assert_not_awaited()


class TestNavigation:
    """Tests for the network-idle strategy and its fallback."""

    async def test_network_idle_success(self, fake_page, quick_config):
        result = await PageSession(fake_page, quick_config).render(
            "https://example.com", CaptureOptions(full_page=False)
        )

        fake_page.goto.assert_awaited_once_with(
            "https://example.com", wait_until=WaitStrategy.NETWORKIDLE, timeout=5000
        )
        assert result.used_fallback is False
        assert result.title == "Example Domain"
        assert result.final_url == fake_page.url

    async def test_fallback_to_dom_ready(self, fake_page, quick_config):
        fake_page.goto.side_effect = [PlaywrightTimeoutError("idle timeout"), None]
        on_fallback = AsyncMock()

        result = await PageSession(fake_page, quick_config, on_fallback=on_fallback).render(
            "https://example.com", CaptureOptions(full_page=False)
        )

        assert result.used_fallback is True
        on_fallback.assert_awaited_once()
        second = fake_page.goto.await_args_list[1]
        assert second.kwargs['wait_until'] == WaitStrategy.DOMCONTENTLOADED
        fake_page.wait_for_timeout.assert_any_await(quick_config.fallback_settle_ms)

    async def test_both_strategies_time_out(self, fake_page, quick_config):
        fake_page.goto.side_effect = PlaywrightTimeoutError("timeout")

        with pytest.raises(NavigationTimeout) as exc_info:
            await PageSession(fake_page, quick_config).render(
                "https://slow.example.com", CaptureOptions(), timeout_ms=1500
            )

        assert exc_info.value.url == "https://slow.example.com"
        assert exc_info.value.timeout_ms == 1500
        assert fake_page.goto.await_count == 2

    async def test_title_failure_yields_empty(self, fake_page, quick_config):
        fake_page.title.side_effect = RuntimeError("page closed")

        result = await PageSession(fake_page, quick_config).render(
            "https://example.com", CaptureOptions(full_page=False)
        )
        assert result.title == ""


class TestFullPagePreparation:
    """Tests for lazy-load scrolling and sticky handling."""

    async def test_lazy_load_steps(self, fake_page, quick_config):
        # Page is 2500px tall, viewport 1000px: positions 0, 1000, 2000
        fake_page.evaluate.side_effect = lambda script, *args: 2500 if "scrollHeight" in script else None

        steps = await PageSession(fake_page, quick_config).trigger_lazy_load(1000)

        assert steps == 3
        scroll_targets = [c.args[1] for c in fake_page.evaluate.await_args_list if len(c.args) > 1]
        assert scroll_targets == [0, 1000, 2000, 0]

    async def test_lazy_load_bounded(self, fake_page, quick_config):
        fake_page.evaluate.side_effect = lambda script, *args: 10 ** 9 if "scrollHeight" in script else None

        steps = await PageSession(fake_page, quick_config).trigger_lazy_load(100)

        assert steps == quick_config.lazy_load_max_steps

    async def test_unsticky(self, fake_page, quick_config):
        await PageSession(fake_page, quick_config).prepare_full_page(CaptureOptions(unsticky=True))

        scripts = [c.args[0] for c in fake_page.evaluate.await_args_list]
        assert UNSTICKY_JS in scripts

    async def test_sticky_settle_without_unsticky(self, fake_page, quick_config):
        await PageSession(fake_page, quick_config).prepare_full_page(CaptureOptions())

        scripts = [c.args[0] for c in fake_page.evaluate.await_args_list]
        assert UNSTICKY_JS not in scripts
        fake_page.wait_for_timeout.assert_any_await(quick_config.sticky_settle_ms)
