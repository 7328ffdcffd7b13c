"""Typed job payloads and handler results.

Every job kind has its own payload model; they form a tagged union keyed
by ``kind`` so that malformed payloads are rejected when the job is
enqueued rather than when it runs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from ..errors import JobValidationError
from .capture import AutoScrollOptions, CaptureOptions, validate_http_url


class JobKind(str, Enum):
    """Kinds of jobs handled by the scheduler."""
    CAPTURE = "capture"
    FRAME_CAPTURE = "frame-capture"
    CRAWL = "crawl"
    CRAWL_BATCH = "crawl-batch"
    AUTO_SCROLL = "auto-scroll"


class JobStatus(str, Enum):
    """Status of a queued job."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


MAX_FRAME_DELAY_SECONDS = 300


class CaptureJob(BaseModel):
    """Capture one URL into an existing pending capture record."""

    kind: Literal["capture"] = "capture"
    capture_id: str
    owner_id: str
    url: str
    group_id: Optional[str] = None
    options: CaptureOptions = Field(default_factory=CaptureOptions)

    @field_validator('url')
    @classmethod
    def check_url(cls, v):
        return validate_http_url(v)


class FrameCaptureJob(BaseModel):
    """Capture one time-delayed frame of a frame group."""

    kind: Literal["frame-capture"] = "frame-capture"
    capture_id: str
    owner_id: str
    url: str
    group_id: str
    frame_delay: float = Field(..., ge=0, le=MAX_FRAME_DELAY_SECONDS, description="Seconds to wait after load")
    frame_index: int = Field(..., ge=1, description="1-based position in the sequence")
    total_frames: int = Field(..., ge=1)
    options: CaptureOptions = Field(default_factory=CaptureOptions)
    auto_scroll: Optional[AutoScrollOptions] = None
    is_scroll_capture: bool = False

    @field_validator('url')
    @classmethod
    def check_url(cls, v):
        return validate_http_url(v)

    @model_validator(mode='after')
    def check_index(self):
        if self.frame_index > self.total_frames:
            raise ValueError("frame_index must not exceed total_frames")
        return self


class CrawlJob(BaseModel):
    """Discover same-origin URLs starting from a base URL."""

    kind: Literal["crawl"] = "crawl"
    owner_id: str
    base_url: str
    group_id: Optional[str] = None
    max_depth: int = Field(default=2, ge=1)
    max_pages: int = Field(default=50, ge=1)

    @field_validator('base_url')
    @classmethod
    def check_url(cls, v):
        return validate_http_url(v)


class CrawlBatchJob(BaseModel):
    """Capture every URL of a crawl group, sequentially."""

    kind: Literal["crawl-batch"] = "crawl-batch"
    group_id: str
    owner_id: str
    urls: List[str] = Field(..., min_length=1)
    options: CaptureOptions = Field(default_factory=CaptureOptions)

    @field_validator('urls')
    @classmethod
    def check_urls(cls, v):
        return [validate_http_url(url) for url in v]


class AutoScrollJob(BaseModel):
    """Chained job that scroll-captures a frame group's page."""

    kind: Literal["auto-scroll"] = "auto-scroll"
    group_id: str
    owner_id: str
    url: str
    auto_scroll: AutoScrollOptions = Field(default_factory=AutoScrollOptions)
    options: CaptureOptions = Field(default_factory=CaptureOptions)

    @field_validator('url')
    @classmethod
    def check_url(cls, v):
        return validate_http_url(v)


JobPayload = Annotated[
    Union[CaptureJob, FrameCaptureJob, CrawlJob, CrawlBatchJob, AutoScrollJob],
    Field(discriminator='kind'),
]

_payload_adapter = TypeAdapter(JobPayload)


def parse_payload(kind: Union[JobKind, str], payload: Union[BaseModel, Dict[str, Any]]):
    """Validate a payload against the model for ``kind``.

    Args:
        kind: Job kind the payload is enqueued under
        payload: Payload model instance or raw dict

    Returns:
        Validated payload model

    Raises:
        JobValidationError: If the payload is malformed or mismatches ``kind``
    """
    try:
        kind_value = JobKind(kind).value
    except ValueError:
        raise JobValidationError(f"Unknown job kind: {kind}")

    data = payload.model_dump(mode='json') if isinstance(payload, BaseModel) else dict(payload)
    if data.setdefault('kind', kind_value) != kind_value:
        raise JobValidationError(f"Payload kind '{data['kind']}' does not match job kind '{kind_value}'")

    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise JobValidationError(f"Invalid payload for {kind_value} job: {e}") from e


@dataclass
class JobResult:
    """Outcome of a job handler.

    Handlers return ``JobResult.ok()`` or ``JobResult.failed(error)``; the
    scheduler treats a failed result as terminal.
    """

    success: bool
    error: Optional[str] = None
    detail: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, **detail) -> "JobResult":
        return cls(success=True, detail=detail or None)

    @classmethod
    def failed(cls, error: Union[str, BaseException]) -> "JobResult":
        if isinstance(error, BaseException):
            error = str(error) or error.__class__.__name__
        return cls(success=False, error=error or "Job failed")
