"""Unit tests for the auto-scroll engine."""

from unittest.mock import AsyncMock

from webshot.capture.scroller import (
    ADVANCE_SCROLL_JS,
    AutoScroller,
    DETECT_SCROLL_JS,
    ScrollState,
    ScrollType,
)


def _state(top, max_scroll=600, scroll_type=ScrollType.WIDGET):
    return {
        'found': True,
        'scrollType': scroll_type,
        'scrollTop': top,
        'scrollHeight': max_scroll + 400,
        'clientHeight': 400,
        'maxScroll': max_scroll,
        'canScroll': top < max_scroll,
    }


def _scripted_page(page, states):
    """Answer detection calls from ``states`` in order; advances return None."""
    remaining = list(states)

    def evaluate(script, *args):
        if script == DETECT_SCROLL_JS:
            return remaining.pop(0)
        return None

    page.evaluate.side_effect = evaluate
    return page


class TestScrollState:
    """Tests for parsing detection results."""

    def test_from_js(self):
        state = ScrollState.from_js(_state(200))

        assert state.scroll_type == ScrollType.WIDGET
        assert state.scroll_top == 200.0
        assert state.max_scroll == 600.0
        assert state.can_scroll is True

    def test_empty_result(self):
        state = ScrollState.from_js(None)

        assert state.scroll_type == ScrollType.NONE
        assert state.can_scroll is False


class TestAutoScroller:
    """Tests for stepping through a scrollable region."""

    async def test_scrolls_to_end(self, fake_page):
        _scripted_page(fake_page, [_state(0), _state(200), _state(400), _state(600)])
        on_step = AsyncMock()

        count = await AutoScroller().run(fake_page, "#viewport", step_size=200, interval_ms=10, on_step=on_step)

        assert count == 3
        assert [c.args[:2] for c in on_step.await_args_list] == [(1, 0.0), (2, 200.0), (3, 400.0)]

        advances = [c.args[1] for c in fake_page.evaluate.await_args_list if c.args[0] == ADVANCE_SCROLL_JS]
        assert advances[0] == {'selector': "#viewport", 'stepSize': 200, 'scrollType': ScrollType.WIDGET}
        fake_page.wait_for_timeout.assert_awaited_with(10)

    async def test_nothing_to_scroll(self, fake_page):
        _scripted_page(fake_page, [_state(0, max_scroll=0, scroll_type=ScrollType.NATIVE)])
        on_step = AsyncMock()

        assert await AutoScroller().run(fake_page, "#viewport", 200, 10, on_step=on_step) == 0
        on_step.assert_not_awaited()

    async def test_max_attempts(self, fake_page):
        states = [_state(i * 100, max_scroll=10000) for i in range(10)]
        _scripted_page(fake_page, states)
        on_step = AsyncMock()

        count = await AutoScroller(default_max_attempts=20).run(
            fake_page, ".scroller", 100, 0, max_attempts=4, on_step=on_step
        )

        assert count == 4
        assert on_step.await_count == 4

    async def test_default_max_attempts(self, fake_page):
        states = [_state(i * 100, max_scroll=10000) for i in range(10)]
        _scripted_page(fake_page, states)

        assert await AutoScroller(default_max_attempts=2).run(fake_page, ".scroller", 100, 0) == 2

    async def test_stuck_position_stops(self, fake_page):
        _scripted_page(fake_page, [_state(0), _state(200), _state(200)])

        count = await AutoScroller().run(fake_page, "#viewport", 200, 0)

        assert count == 2
