"""Data models for capture options, job payloads and progress events."""

from .capture import (
    AutoScrollOptions,
    BasicAuth,
    CaptureKind,
    CaptureOptions,
    CaptureProgressEvent,
    CaptureStatus,
    CookieSpec,
    FormInput,
    FormInputType,
    FormStep,
    GroupKind,
    GroupProgressEvent,
    GroupStatus,
    SubmitTrigger,
    TriggerSelector,
    ValidationCheck,
    ValidationCheckType,
)
from .jobs import (
    AutoScrollJob,
    CaptureJob,
    CrawlBatchJob,
    CrawlJob,
    FrameCaptureJob,
    JobKind,
    JobResult,
    JobStatus,
    parse_payload,
)

__all__ = [
    "AutoScrollOptions",
    "BasicAuth",
    "CaptureKind",
    "CaptureOptions",
    "CaptureProgressEvent",
    "CaptureStatus",
    "CookieSpec",
    "FormInput",
    "FormInputType",
    "FormStep",
    "GroupKind",
    "GroupProgressEvent",
    "GroupStatus",
    "SubmitTrigger",
    "TriggerSelector",
    "ValidationCheck",
    "ValidationCheckType",
    "AutoScrollJob",
    "CaptureJob",
    "CrawlBatchJob",
    "CrawlJob",
    "FrameCaptureJob",
    "JobKind",
    "JobResult",
    "JobStatus",
    "parse_payload",
]
