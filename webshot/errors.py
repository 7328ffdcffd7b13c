"""Exception hierarchy for the capture pipeline."""

from typing import Optional


class WebshotError(Exception):
    """Base exception for all pipeline errors."""
    pass


class NavigationTimeout(WebshotError):
    """Raised when a page fails to load under both navigation strategies."""

    def __init__(self, url: str, timeout_ms: int, message: Optional[str] = None):
        self.url = url
        self.timeout_ms = timeout_ms
        super().__init__(message or f"Navigation to {url} timed out after {timeout_ms}ms")


class ElementNotFound(WebshotError):
    """Raised when an interaction target selector matches nothing."""

    def __init__(self, selector: str):
        self.selector = selector
        super().__init__(f"Element not found: {selector}")


class CaptureFailure(WebshotError):
    """Raised when a capture cannot be produced (page creation, raster, persistence)."""
    pass


class CrawlFetchFailure(WebshotError):
    """Raised when a single page cannot be fetched during crawl discovery."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class JobFailure(WebshotError):
    """Raised when a job handler fails; the job is marked failed without retry."""
    pass


class JobValidationError(WebshotError):
    """Raised when a job payload does not match its kind."""
    pass


class InvalidStatusTransition(WebshotError):
    """Raised when a status update would violate the capture lifecycle."""

    def __init__(self, entity: str, entity_id: str, target: str):
        self.entity = entity
        self.entity_id = entity_id
        self.target = target
        super().__init__(f"Cannot move {entity} {entity_id} to '{target}'")


class RecordNotFound(WebshotError):
    """Raised when a capture, group or job id does not exist."""
    pass


class EngineLaunchError(WebshotError):
    """Raised when the shared browser engine cannot be launched.

    Unlike other errors this one is fatal: no capture can be served.
    """
    pass
