"""Browser capture components.

Main Components:
- Browser Factory: shared engine handle and per-capture pages
- Page Session: navigation with fallback, injection ordering, full-page readiness
- Interactions: trigger clicks and form automation
- Auto-Scroller: step-wise scroll capture of scrollable regions
- Capture Executor: the capture protocol from pending record to stored image

Usage:
    from webshot.capture import BrowserFactory, CaptureExecutor

    executor = CaptureExecutor(BrowserFactory(), store, assets, publisher)
    record = await executor.execute(capture, CaptureOptions())
"""

from .browser_factory import BrowserConfig, BrowserEngineType, BrowserFactory, EngineHandle, PageConfig
from .executor import CaptureExecutor, CaptureExecutorConfig
from .interactions import FormAutomation, HumanPointer, TriggerSequence
from .page_session import PageSession, PageSessionConfig, RenderResult, plan_injection
from .scroller import AutoScroller, ScrollState

__all__ = [
    "BrowserConfig",
    "BrowserEngineType",
    "BrowserFactory",
    "EngineHandle",
    "PageConfig",
    "CaptureExecutor",
    "CaptureExecutorConfig",
    "FormAutomation",
    "HumanPointer",
    "TriggerSequence",
    "PageSession",
    "PageSessionConfig",
    "RenderResult",
    "plan_injection",
    "AutoScroller",
    "ScrollState",
]
