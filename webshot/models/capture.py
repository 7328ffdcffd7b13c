"""Pydantic models for capture requests, options and progress events.

This module defines the option bag accepted by every capture job, the
interaction descriptions (trigger selectors, form steps) and the payloads
published on notification channels.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, model_validator


class CaptureKind(str, Enum):
    """Kind of capture record."""
    SINGLE = "single"
    CRAWL_ITEM = "crawl-item"
    FRAME = "frame"
    SCROLL = "scroll"


class CaptureStatus(str, Enum):
    """Lifecycle status of a capture."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CaptureStatus.COMPLETED, CaptureStatus.FAILED)


class GroupKind(str, Enum):
    """Kind of capture group."""
    CRAWL = "crawl"
    FRAME = "frame"


class GroupStatus(str, Enum):
    """Lifecycle status of a capture group."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BasicAuth(BaseModel):
    """HTTP basic authentication credentials."""

    username: str
    password: str


class CookieSpec(BaseModel):
    """Cookie to install in the browser context before navigation."""

    name: str
    value: str
    domain: Optional[str] = None
    path: str = "/"
    url: Optional[str] = Field(default=None, description="Scope by URL instead of domain")
    secure: bool = False
    http_only: bool = False

    @model_validator(mode='after')
    def require_scope(self):
        if not self.domain and not self.url:
            raise ValueError("Cookie requires either 'domain' or 'url'")
        return self

    def to_playwright(self) -> Dict[str, Any]:
        """Convert to the cookie dict accepted by ``BrowserContext.add_cookies``."""
        cookie: Dict[str, Any] = {
            'name': self.name,
            'value': self.value,
            'secure': self.secure,
            'httpOnly': self.http_only,
        }
        if self.url:
            cookie['url'] = self.url
        else:
            cookie['domain'] = self.domain
            cookie['path'] = self.path
        return cookie


class TriggerSelector(BaseModel):
    """An element click performed before a screenshot."""

    selector: str = Field(..., min_length=1)
    delay_before_ms: int = Field(default=0, ge=0)
    wait_after_ms: int = Field(default=1000, ge=0)
    description: Optional[str] = None


class FormInputType(str, Enum):
    """Supported form input types."""
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"


class FormInput(BaseModel):
    """A single form field to fill."""

    selector: str = Field(..., min_length=1)
    type: FormInputType = FormInputType.TEXT
    value: Any = Field(default=None, description="Text, option value, or checkbox state")


class SubmitTrigger(BaseModel):
    """Element clicked to submit a form step."""

    selector: str = Field(..., min_length=1)
    wait_after_ms: int = Field(default=2000, ge=0)


class ValidationCheckType(str, Enum):
    """Types of post-submit validation checks."""
    EXISTS = "exists"
    TEXT = "text"
    CLASS = "class"
    ATTRIBUTE = "attribute"


class ValidationCheck(BaseModel):
    """A logged assertion about the page after a form step."""

    selector: str = Field(..., min_length=1)
    type: ValidationCheckType = ValidationCheckType.EXISTS
    expected: Optional[str] = None
    attribute: Optional[str] = None

    @model_validator(mode='after')
    def require_attribute_name(self):
        if self.type == ValidationCheckType.ATTRIBUTE and not self.attribute:
            raise ValueError("Attribute validation requires 'attribute'")
        return self


class FormStep(BaseModel):
    """One step of a scripted form interaction."""

    form_inputs: List[FormInput] = Field(default_factory=list)
    submit_trigger: Optional[SubmitTrigger] = None
    validation_checks: List[ValidationCheck] = Field(default_factory=list)
    step_timeout_ms: int = Field(default=10000, ge=100)
    screenshot_after_fill: bool = False
    screenshot_after_submit: bool = False
    screenshot_after_validation: bool = False


class AutoScrollOptions(BaseModel):
    """Auto-scroll request attached to a frame group."""

    enabled: bool = True
    selector: str = Field(default="#viewport", description="Scrollable region selector")
    step_size: int = Field(default=200, ge=1, description="Pixels advanced per step")
    interval_ms: int = Field(default=1000, ge=0, description="Delay between steps")
    max_attempts: Optional[int] = Field(default=None, ge=1)


class CaptureOptions(BaseModel):
    """Options recognized by every capture job."""

    width: int = Field(default=1920, ge=1, le=10000)
    height: int = Field(default=1080, ge=1, le=10000)
    device_scale_factor: float = Field(default=1.0, gt=0, le=4)
    full_page: bool = True
    unsticky: bool = False
    cookie_prevention: bool = False
    stealth_mode: bool = False
    custom_css: Optional[str] = None
    custom_js: Optional[str] = None
    inject_before_navigation: bool = False
    inject_before_viewport: bool = False
    basic_auth: Optional[BasicAuth] = None
    custom_cookies: List[CookieSpec] = Field(default_factory=list)
    trigger_selectors: List[TriggerSelector] = Field(default_factory=list)
    form_steps: List[FormStep] = Field(default_factory=list)

    @property
    def has_interactions(self) -> bool:
        return bool(self.trigger_selectors or self.form_steps)


def validate_http_url(v: str) -> str:
    """Validate that a URL is absolute http(s)."""
    parsed = urlparse(v)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError(f"URL must be absolute http(s): {v}")
    return v


class CaptureProgressEvent(BaseModel):
    """Progress of a single capture."""

    capture_id: str
    progress: int = Field(..., ge=0, le=100)
    stage: str
    status: CaptureStatus = CaptureStatus.PROCESSING
    error: Optional[str] = None
    group_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class GroupProgressEvent(BaseModel):
    """Aggregate progress of a capture group."""

    group_id: str
    completed: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    progress: int = Field(..., ge=0, le=100)
    status: GroupStatus
    stage: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
