"""Stealth and cookie-prevention page configuration.

Everything here is declarative: init scripts that run before any page
script, a CSS rule set hiding consent banners, and a host deny-list applied
through a context-level request route.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Route

logger = logging.getLogger(__name__)


STEALTH_SCRIPT = """
(() => {
    Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
    Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
    Object.defineProperty(navigator, 'plugins', {
        get: () => [
            {name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer'},
            {name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai'},
            {name: 'Native Client', filename: 'internal-nacl-plugin'},
        ],
    });
    Object.defineProperty(navigator, 'hardwareConcurrency', {get: () => 8});
    Object.defineProperty(navigator, 'deviceMemory', {get: () => 8});
    Object.defineProperty(navigator, 'maxTouchPoints', {get: () => 0});
    window.chrome = window.chrome || {runtime: {}, loadTimes: () => ({}), csi: () => ({})};

    if (navigator.permissions && navigator.permissions.query) {
        const originalQuery = navigator.permissions.query.bind(navigator.permissions);
        navigator.permissions.query = (parameters) => (
            parameters && parameters.name === 'notifications'
                ? Promise.resolve({state: Notification.permission})
                : originalQuery(parameters)
        );
    }

    const patchWebGL = (proto) => {
        if (!proto) return;
        const getParameter = proto.getParameter;
        proto.getParameter = function(parameter) {
            if (parameter === 37445) return 'Intel Inc.';
            if (parameter === 37446) return 'Intel Iris OpenGL Engine';
            return getParameter.call(this, parameter);
        };
    };
    patchWebGL(window.WebGLRenderingContext && WebGLRenderingContext.prototype);
    patchWebGL(window.WebGL2RenderingContext && WebGL2RenderingContext.prototype);

    const originalNow = performance.now.bind(performance);
    performance.now = () => originalNow() + Math.random() * 0.1;
})();
"""

STORAGE_BLOCK_SCRIPT = """
(() => {
    try {
        Object.defineProperty(document, 'cookie', {
            configurable: true,
            get: () => '',
            set: () => true,
        });
    } catch (e) {}

    const memoryStorage = () => {
        return {
            getItem: () => null,
            setItem: () => undefined,
            removeItem: () => undefined,
            clear: () => undefined,
            key: () => null,
            get length() { return 0; },
        };
    };
    for (const name of ['localStorage', 'sessionStorage']) {
        try {
            Object.defineProperty(window, name, {configurable: true, get: memoryStorage});
        } catch (e) {}
    }
    try {
        Object.defineProperty(window, 'indexedDB', {configurable: true, get: () => undefined});
    } catch (e) {}
})();
"""

COOKIE_BANNER_SELECTORS = [
    "#onetrust-banner-sdk",
    "#onetrust-consent-sdk",
    "#CybotCookiebotDialog",
    "#cookie-banner",
    "#cookie-consent",
    "#cookieConsent",
    "#gdpr-cookie-message",
    ".cc-window",
    ".cookie-banner",
    ".cookie-consent",
    ".cookie-notice",
    ".cookies-banner",
    ".qc-cmp2-container",
    ".fc-consent-root",
    "[id^='sp_message_container']",
    "[aria-label*='cookie' i]",
    "[class*='cookie-consent']",
    "[class*='CookieConsent']",
]

BANNER_HIDE_CSS = ",\n".join(COOKIE_BANNER_SELECTORS) + (
    " {\n    display: none !important;\n    visibility: hidden !important;\n}\n"
    "body.modal-open, html.sp-message-open { overflow: auto !important; }\n"
)

TRACKER_DENY_LIST = (
    "cookielaw.org",
    "onetrust.com",
    "cookiebot.com",
    "consensu.org",
    "quantcast.com",
    "trustarc.com",
    "usercentrics.eu",
    "didomi.io",
    "privacy-mgmt.com",
    "cookiepro.com",
    "google-analytics.com",
    "googletagmanager.com",
    "doubleclick.net",
    "facebook.net",
    "hotjar.com",
)


def style_injection_script(css: str) -> str:
    """Build an init script that adds ``css`` once the document exists."""
    escaped = css.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")
    return f"""
(() => {{
    const inject = () => {{
        const style = document.createElement('style');
        style.setAttribute('data-webshot', 'true');
        style.textContent = `{escaped}`;
        (document.head || document.documentElement).appendChild(style);
    }};
    if (document.readyState === 'loading') {{
        document.addEventListener('DOMContentLoaded', inject, {{once: true}});
    }} else {{
        inject();
    }}
}})();
"""


def is_blocked_host(url: str, deny_list: Iterable[str] = TRACKER_DENY_LIST) -> bool:
    """Check whether a request URL's host is on (or under) the deny-list."""
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    return any(host == domain or host.endswith("." + domain) for domain in deny_list)


async def apply_stealth(context: BrowserContext) -> None:
    """Mask common automation fingerprints before any page script runs."""
    await context.add_init_script(STEALTH_SCRIPT)


async def apply_cookie_prevention(
    context: BrowserContext,
    deny_list: Optional[Iterable[str]] = None
) -> None:
    """Neutralize client storage, block consent/tracking hosts and hide banners."""
    blocked = tuple(deny_list) if deny_list is not None else TRACKER_DENY_LIST

    async def _handler(route: Route) -> None:
        url = route.request.url
        if is_blocked_host(url, blocked):
            logger.debug(f"Blocked tracking request: {url}")
            await route.abort("blockedbyclient")
            return
        await route.continue_()

    await context.add_init_script(STORAGE_BLOCK_SCRIPT)
    await context.add_init_script(style_injection_script(BANNER_HIDE_CSS))
    await context.route("**/*", _handler)
