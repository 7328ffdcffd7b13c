"""Unit tests for stealth and cookie-prevention configuration."""

from unittest.mock import AsyncMock, MagicMock

from webshot.capture.privacy import (
    BANNER_HIDE_CSS,
    STEALTH_SCRIPT,
    STORAGE_BLOCK_SCRIPT,
    apply_cookie_prevention,
    apply_stealth,
    is_blocked_host,
    style_injection_script,
)


def _context():
    context = MagicMock()
    context.add_init_script = AsyncMock()
    context.route = AsyncMock()
    return context


def _route(url):
    route = MagicMock()
    route.request.url = url
    route.abort = AsyncMock()
    route.continue_ = AsyncMock()
    return route


class TestBlockedHosts:
    """Tests for the tracking host deny-list."""

    def test_exact_and_subdomain_match(self):
        assert is_blocked_host("https://cdn.cookielaw.org/consent.js")
        assert is_blocked_host("https://www.googletagmanager.com/gtm.js?id=GTM-1")
        assert is_blocked_host("https://hotjar.com/")

    def test_lookalike_not_blocked(self):
        assert not is_blocked_host("https://notcookielaw.org/")
        assert not is_blocked_host("https://example.com/onetrust.com.js")

    def test_no_host(self):
        assert not is_blocked_host("data:text/plain,hello")

    def test_custom_deny_list(self):
        assert is_blocked_host("https://ads.example.net/x", ["example.net"])
        assert not is_blocked_host("https://cdn.cookielaw.org/x", ["example.net"])


class TestStyleInjection:
    """Tests for the CSS init script builder."""

    def test_escapes_template_literal(self):
        script = style_injection_script("a::after { content: `${x}` }")

        assert "\\`" in script
        assert "\\${" in script
        assert "DOMContentLoaded" in script

    def test_banner_css_hides_known_banners(self):
        assert "#onetrust-banner-sdk" in BANNER_HIDE_CSS
        assert "display: none !important" in BANNER_HIDE_CSS


class TestContextConfiguration:
    """Tests for context-level privacy setup."""

    async def test_apply_stealth(self):
        context = _context()
        await apply_stealth(context)

        context.add_init_script.assert_awaited_once_with(STEALTH_SCRIPT)
        assert "webdriver" in STEALTH_SCRIPT

    async def test_apply_cookie_prevention(self):
        context = _context()
        await apply_cookie_prevention(context)

        scripts = [c.args[0] for c in context.add_init_script.await_args_list]
        assert scripts[0] == STORAGE_BLOCK_SCRIPT
        assert "onetrust" in scripts[1]
        context.route.assert_awaited_once()
        assert context.route.await_args.args[0] == "**/*"

    async def test_route_handler_blocks_trackers(self):
        context = _context()
        await apply_cookie_prevention(context)
        handler = context.route.await_args.args[1]

        blocked = _route("https://consent.cookiebot.com/uc.js")
        await handler(blocked)
        blocked.abort.assert_awaited_once_with("blockedbyclient")
        blocked.continue_.assert_not_awaited()

        allowed = _route("https://example.com/app.js")
        await handler(allowed)
        allowed.continue_.assert_awaited_once()
        allowed.abort.assert_not_awaited()
