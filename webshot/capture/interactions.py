"""Interaction engines run before a standalone capture is rasterized.

``TriggerSequence`` clicks a list of elements with human-like pointer
motion and captures the page after each click. ``FormAutomation`` fills and
submits forms step by step, logging validation checks and optionally
capturing the page at each phase.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, List, Optional, Tuple

from playwright.async_api import ElementHandle, Page, TimeoutError as PlaywrightTimeoutError

from ..errors import CaptureFailure, ElementNotFound
from ..models.capture import (
    FormInput,
    FormInputType,
    FormStep,
    TriggerSelector,
    ValidationCheck,
    ValidationCheckType,
)

logger = logging.getLogger(__name__)


TriggerCaptureCallback = Callable[[int, TriggerSelector], Awaitable[None]]
FormScreenshotCallback = Callable[[int, str], Awaitable[None]]


class FormPhase:
    """Points in a form step at which a screenshot may be taken."""
    AFTER_FILL = "after-fill"
    AFTER_SUBMIT = "after-submit"
    AFTER_VALIDATION = "after-validation"


def bezier_path(
    start: Tuple[float, float],
    end: Tuple[float, float],
    waypoints: int,
    rng: random.Random
) -> List[Tuple[float, float]]:
    """Points along a quadratic curve from ``start`` to ``end`` with jitter."""
    (x0, y0), (x2, y2) = start, end
    distance = max(abs(x2 - x0), abs(y2 - y0), 1.0)
    # Control point pulled off the straight line
    x1 = (x0 + x2) / 2 + rng.uniform(-0.3, 0.3) * distance
    y1 = (y0 + y2) / 2 + rng.uniform(-0.3, 0.3) * distance

    points = []
    for i in range(1, waypoints + 1):
        t = i / (waypoints + 1)
        x = (1 - t) ** 2 * x0 + 2 * (1 - t) * t * x1 + t ** 2 * x2
        y = (1 - t) ** 2 * y0 + 2 * (1 - t) * t * y1 + t ** 2 * y2
        points.append((x + rng.uniform(-2, 2), y + rng.uniform(-2, 2)))
    points.append(end)
    return points


class HumanPointer:
    """Moves the mouse along curved, jittered paths before clicking."""

    def __init__(self, page: Page, rng: Optional[random.Random] = None):
        self.page = page
        self.rng = rng or random.Random()
        self.position: Optional[Tuple[float, float]] = None

    def _start_position(self) -> Tuple[float, float]:
        if self.position is not None:
            return self.position
        viewport = self.page.viewport_size or {'width': 1280, 'height': 720}
        return (
            self.rng.uniform(0, viewport['width'] * 0.3),
            self.rng.uniform(0, viewport['height'] * 0.3),
        )

    async def click(self, element: ElementHandle) -> None:
        """Move to a jittered point inside ``element`` and press it."""
        box = await element.bounding_box()
        if box is None:
            raise CaptureFailure("Element has no bounding box (not rendered)")

        target = (
            box['x'] + box['width'] / 2 + self.rng.uniform(-0.25, 0.25) * box['width'],
            box['y'] + box['height'] / 2 + self.rng.uniform(-0.25, 0.25) * box['height'],
        )

        for x, y in bezier_path(self._start_position(), target, self.rng.randint(3, 6), self.rng):
            await self.page.mouse.move(x, y, steps=self.rng.randint(3, 8))
            await asyncio.sleep(self.rng.uniform(0.01, 0.05))

        await self.page.mouse.down()
        await asyncio.sleep(self.rng.uniform(0.05, 0.15))
        await self.page.mouse.up()
        self.position = target


class TriggerResult:
    """Outcome of one trigger."""

    CAPTURED = "captured"
    SKIPPED = "skipped"
    FAILED = "failed"

    def __init__(self, index: int, selector: str, status: str, error: Optional[str] = None):
        self.index = index
        self.selector = selector
        self.status = status
        self.error = error

    def __repr__(self) -> str:
        return f"TriggerResult(index={self.index}, status={self.status})"


class TriggerSequence:
    """Clicks trigger elements in order, capturing after each one."""

    def __init__(
        self,
        page: Page,
        on_capture: TriggerCaptureCallback,
        pointer: Optional[HumanPointer] = None
    ):
        """Initialize trigger sequence.

        Args:
            page: Playwright page to interact with
            on_capture: Awaited with (trigger index, trigger) after each click
            pointer: Pointer used for clicks
        """
        self.page = page
        self.on_capture = on_capture
        self.pointer = pointer or HumanPointer(page)

    async def run(self, triggers: List[TriggerSelector]) -> List[TriggerResult]:
        """Run every trigger; one failing trigger never stops the rest."""
        logger.info(f"Running {len(triggers)} triggers")
        results = []

        for index, trigger in enumerate(triggers):
            try:
                results.append(await self._run_trigger(index, trigger))
            except Exception as e:
                logger.error(f"Trigger {index} ({trigger.selector}) failed: {e}")
                results.append(TriggerResult(index, trigger.selector, TriggerResult.FAILED, str(e)))

        captured = sum(1 for r in results if r.status == TriggerResult.CAPTURED)
        logger.info(f"Triggers finished: {captured}/{len(triggers)} captured")
        return results

    async def _run_trigger(self, index: int, trigger: TriggerSelector) -> TriggerResult:
        if trigger.delay_before_ms:
            await self.page.wait_for_timeout(trigger.delay_before_ms)

        element = await self.page.query_selector(trigger.selector)
        if element is None:
            logger.warning(f"Skipping trigger {index}: {ElementNotFound(trigger.selector)}")
            return TriggerResult(index, trigger.selector, TriggerResult.SKIPPED, "element not found")

        await element.scroll_into_view_if_needed()
        await self.pointer.click(element)

        if trigger.wait_after_ms:
            await self.page.wait_for_timeout(trigger.wait_after_ms)

        await self.on_capture(index, trigger)
        return TriggerResult(index, trigger.selector, TriggerResult.CAPTURED)


class FormAutomation:
    """Scripted form filling and submission."""

    def __init__(
        self,
        page: Page,
        on_screenshot: Optional[FormScreenshotCallback] = None,
        pointer: Optional[HumanPointer] = None
    ):
        """Initialize form automation.

        Args:
            page: Playwright page to interact with
            on_screenshot: Awaited with (step index, phase) when a step asks
                for a screenshot
            pointer: Pointer used for the submit click
        """
        self.page = page
        self.on_screenshot = on_screenshot
        self.pointer = pointer or HumanPointer(page)

        # Input type mapping
        self._input_handlers = {
            FormInputType.TEXT: self._fill_text,
            FormInputType.TEXTAREA: self._fill_text,
            FormInputType.SELECT: self._fill_select,
            FormInputType.CHECKBOX: self._fill_checkbox,
            FormInputType.RADIO: self._fill_radio,
        }

    async def run(self, steps: List[FormStep]) -> int:
        """Run form steps in order.

        Returns:
            Number of steps completed

        Raises:
            CaptureFailure: On the first failing step; later steps are not run
        """
        logger.info(f"Executing {len(steps)} form steps")

        for index, step in enumerate(steps):
            try:
                await self._run_step(index, step)
            except Exception as e:
                logger.error(f"Form step {index} failed, aborting remaining steps: {e}")
                raise CaptureFailure(f"Form step {index} failed: {e}") from e

        return len(steps)

    async def _run_step(self, index: int, step: FormStep) -> None:
        for form_input in step.form_inputs:
            await self._wait_for(form_input.selector, step.step_timeout_ms)
            await self._input_handlers[form_input.type](form_input, step.step_timeout_ms)
            logger.debug(f"Filled {form_input.type.value} input {form_input.selector}")

        if step.screenshot_after_fill:
            await self._screenshot(index, FormPhase.AFTER_FILL)

        if step.submit_trigger:
            element = await self._wait_for(step.submit_trigger.selector, step.step_timeout_ms)
            await element.scroll_into_view_if_needed()
            await self.pointer.click(element)
            await self.page.wait_for_timeout(step.submit_trigger.wait_after_ms)

            if step.screenshot_after_submit:
                await self._screenshot(index, FormPhase.AFTER_SUBMIT)

        if step.validation_checks:
            for check in step.validation_checks:
                await self._validate(index, check)

            if step.screenshot_after_validation:
                await self._screenshot(index, FormPhase.AFTER_VALIDATION)

    async def _wait_for(self, selector: str, timeout_ms: int) -> ElementHandle:
        try:
            element = await self.page.wait_for_selector(selector, timeout=timeout_ms, state="attached")
        except PlaywrightTimeoutError as e:
            raise ElementNotFound(selector) from e
        if element is None:
            raise ElementNotFound(selector)
        return element

    async def _screenshot(self, index: int, phase: str) -> None:
        if self.on_screenshot:
            await self.on_screenshot(index, phase)

    async def _fill_text(self, form_input: FormInput, timeout_ms: int) -> None:
        value = "" if form_input.value is None else str(form_input.value)
        await self.page.fill(form_input.selector, value, timeout=timeout_ms)

    async def _fill_select(self, form_input: FormInput, timeout_ms: int) -> None:
        await self.page.select_option(form_input.selector, str(form_input.value), timeout=timeout_ms)

    async def _fill_checkbox(self, form_input: FormInput, timeout_ms: int) -> None:
        checked = form_input.value
        if isinstance(checked, str):
            checked = checked.lower() in ('true', '1', 'yes', 'on')
        await self.page.set_checked(form_input.selector, bool(checked), timeout=timeout_ms)

    async def _fill_radio(self, form_input: FormInput, timeout_ms: int) -> None:
        await self.page.check(form_input.selector, timeout=timeout_ms)

    async def _validate(self, index: int, check: ValidationCheck) -> bool:
        """Evaluate a validation check; the result is only logged."""
        try:
            element = await self.page.query_selector(check.selector)
            if check.type == ValidationCheckType.EXISTS:
                passed = element is not None
                actual = "present" if passed else "missing"
            elif element is None:
                passed, actual = False, "missing"
            elif check.type == ValidationCheckType.TEXT:
                actual = (await element.text_content()) or ""
                passed = (check.expected or "") in actual
            elif check.type == ValidationCheckType.CLASS:
                actual = (await element.get_attribute("class")) or ""
                passed = (check.expected or "") in actual.split()
            else:
                actual = await element.get_attribute(check.attribute)
                passed = actual is not None if check.expected is None else actual == check.expected
        except Exception as e:
            logger.warning(f"Form step {index}: validation {check.type.value} on {check.selector} errored: {e}")
            return False

        if passed:
            logger.info(f"Form step {index}: validation {check.type.value} on {check.selector} passed")
        else:
            logger.warning(
                f"Form step {index}: validation {check.type.value} on {check.selector} failed "
                f"(expected={check.expected!r}, actual={actual!r})"
            )
        return passed
