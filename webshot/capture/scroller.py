"""Auto-scroll engine.

Advances a scrollable region step by step, handing each position to a
callback that captures the viewport. Custom scrollbar widgets (an
``overview`` panel moved inside a ``viewport`` by its ``top`` style) are
detected before falling back to native element or window scrolling.
"""

import logging
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page

logger = logging.getLogger(__name__)


DEFAULT_MAX_ATTEMPTS = 50


class ScrollType:
    """Scroll mechanisms, in detection priority order."""
    WIDGET = "tinyscrollbar"
    WIDGET_GENERIC = "tinyscrollbar-generic"
    WIDGET_FOUND = "tinyscrollbar-found"
    NATIVE = "standard"
    NONE = "none"


# Resolves the scroll target for ``selector`` and reports its state.
DETECT_SCROLL_JS = """
({selector}) => {
    const widgetState = (viewport, overview, type) => {
        const top = Math.abs(parseFloat(overview.style.top || '0')) || 0;
        const maxScroll = Math.max(0, overview.scrollHeight - viewport.clientHeight);
        return {
            found: true,
            scrollType: type,
            scrollTop: top,
            scrollHeight: overview.scrollHeight,
            clientHeight: viewport.clientHeight,
            maxScroll: maxScroll,
            canScroll: top < maxScroll,
        };
    };

    const root = document.querySelector(selector);

    if (root) {
        const viewport = root.querySelector('#viewport') || (root.id === 'viewport' ? root : null);
        const overview = viewport && (viewport.querySelector('#overview') || root.querySelector('#overview'));
        if (viewport && overview) return widgetState(viewport, overview, 'tinyscrollbar');

        const genericViewport = root.querySelector('.viewport') || (root.classList.contains('viewport') ? root : null);
        const genericOverview = genericViewport && genericViewport.querySelector('.overview');
        if (genericViewport && genericOverview) return widgetState(genericViewport, genericOverview, 'tinyscrollbar-generic');
    }

    const anyViewport = document.querySelector('.viewport, [data-scrollbar] .viewport');
    const anyOverview = anyViewport && anyViewport.querySelector('.overview');
    if (anyViewport && anyOverview) return widgetState(anyViewport, anyOverview, 'tinyscrollbar-found');

    const el = root || document.scrollingElement || document.documentElement;
    const maxScroll = Math.max(0, el.scrollHeight - el.clientHeight);
    return {
        found: !!root,
        scrollType: 'standard',
        scrollTop: el.scrollTop,
        scrollHeight: el.scrollHeight,
        clientHeight: el.clientHeight,
        maxScroll: maxScroll,
        canScroll: el.scrollTop < maxScroll,
    };
}
"""

# Advances the mechanism reported by DETECT_SCROLL_JS by ``stepSize`` pixels.
ADVANCE_SCROLL_JS = """
({selector, stepSize, scrollType}) => {
    const root = document.querySelector(selector);
    if (scrollType === 'standard') {
        const el = root || document.scrollingElement || document.documentElement;
        el.scrollTop = el.scrollTop + stepSize;
        return el.scrollTop;
    }

    let viewport, overview;
    if (scrollType === 'tinyscrollbar' && root) {
        viewport = root.querySelector('#viewport') || (root.id === 'viewport' ? root : null);
        overview = viewport && (viewport.querySelector('#overview') || root.querySelector('#overview'));
    } else if (scrollType === 'tinyscrollbar-generic' && root) {
        viewport = root.querySelector('.viewport') || (root.classList.contains('viewport') ? root : null);
        overview = viewport && viewport.querySelector('.overview');
    } else {
        viewport = document.querySelector('.viewport, [data-scrollbar] .viewport');
        overview = viewport && viewport.querySelector('.overview');
    }
    if (!viewport || !overview) return -1;

    const current = Math.abs(parseFloat(overview.style.top || '0')) || 0;
    const maxScroll = Math.max(0, overview.scrollHeight - viewport.clientHeight);
    const next = Math.min(current + stepSize, maxScroll);
    overview.style.top = (-next) + 'px';

    const widgetHost = root || viewport.parentElement;
    if (widgetHost && widgetHost.tinyscrollbar && typeof widgetHost.tinyscrollbar.update === 'function') {
        widgetHost.tinyscrollbar.update(next);
    }
    return next;
}
"""


class ScrollState:
    """Scroll state reported by the page."""

    def __init__(
        self,
        scroll_type: str,
        scroll_top: float,
        scroll_height: float,
        client_height: float,
        max_scroll: float,
        can_scroll: bool,
    ):
        self.scroll_type = scroll_type
        self.scroll_top = scroll_top
        self.scroll_height = scroll_height
        self.client_height = client_height
        self.max_scroll = max_scroll
        self.can_scroll = can_scroll

    @classmethod
    def from_js(cls, data: Optional[dict]) -> "ScrollState":
        if not data:
            return cls(ScrollType.NONE, 0, 0, 0, 0, False)
        return cls(
            scroll_type=data.get('scrollType', ScrollType.NONE),
            scroll_top=float(data.get('scrollTop') or 0),
            scroll_height=float(data.get('scrollHeight') or 0),
            client_height=float(data.get('clientHeight') or 0),
            max_scroll=float(data.get('maxScroll') or 0),
            can_scroll=bool(data.get('canScroll')),
        )

    def __repr__(self) -> str:
        return (f"ScrollState(type={self.scroll_type}, top={self.scroll_top}, "
                f"max={self.max_scroll}, can_scroll={self.can_scroll})")


ScrollStepCallback = Callable[[int, float, ScrollState], Awaitable[None]]


class AutoScroller:
    """Scrolls a region step by step, capturing at each position."""

    def __init__(self, default_max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.default_max_attempts = default_max_attempts

    async def detect(self, page: Page, selector: str) -> ScrollState:
        return ScrollState.from_js(await page.evaluate(DETECT_SCROLL_JS, {'selector': selector}))

    async def run(
        self,
        page: Page,
        selector: str,
        step_size: int,
        interval_ms: int,
        max_attempts: Optional[int] = None,
        on_step: Optional[ScrollStepCallback] = None,
    ) -> int:
        """Scroll and capture until the end of the region or ``max_attempts``.

        Args:
            page: Loaded page
            selector: Scrollable region selector
            step_size: Pixels advanced per step
            interval_ms: Delay after each advance
            max_attempts: Upper bound on captures taken
            on_step: Awaited with (1-based index, position, state) before
                each advance

        Returns:
            Number of steps captured; 0 if the region cannot scroll
        """
        max_attempts = max_attempts or self.default_max_attempts
        state = await self.detect(page, selector)

        if not state.can_scroll:
            logger.info(f"Nothing to scroll for {selector} ({state.scroll_type})")
            return 0

        logger.info(f"Auto-scrolling {selector} via {state.scroll_type}, max {max_attempts} steps")
        count = 0
        scroll_type = state.scroll_type

        while state.can_scroll and count < max_attempts:
            count += 1
            if on_step:
                await on_step(count, state.scroll_top, state)

            await page.evaluate(
                ADVANCE_SCROLL_JS,
                {'selector': selector, 'stepSize': step_size, 'scrollType': scroll_type},
            )
            await page.wait_for_timeout(interval_ms)

            previous_top = state.scroll_top
            state = await self.detect(page, selector)
            if state.can_scroll and state.scroll_top <= previous_top:
                logger.warning(f"Scroll position stuck at {state.scroll_top}, stopping")
                break

        logger.info(f"Auto-scroll finished after {count} steps")
        return count
