"""Configuration system for the capture pipeline.

Settings are loaded from a YAML file (``config/webshot.yaml`` by default,
or the path in ``WEBSHOT_CONFIG``), merged with environment-specific
overrides and finally with individual environment variables.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BrowserSettings(BaseModel):
    """Shared browser engine settings."""

    engine: str = Field(default="chromium", description="Browser engine to launch")
    headless: bool = Field(default=True, description="Run browser headless")
    launch_args: List[str] = Field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    viewport_width: int = Field(default=1920, ge=1)
    viewport_height: int = Field(default=1080, ge=1)

    @field_validator('engine')
    @classmethod
    def validate_engine(cls, v):
        valid_engines = {'chromium', 'firefox', 'webkit'}
        if v not in valid_engines:
            raise ValueError(f"Engine must be one of: {valid_engines}")
        return v


class SchedulerSettings(BaseModel):
    """Job scheduler settings."""

    concurrency: int = Field(default=5, ge=1, description="Maximum concurrently executing jobs")
    poll_interval_seconds: float = Field(default=10.0, gt=0, description="Queue polling interval")


class CaptureSettings(BaseModel):
    """Navigation and rasterization settings."""

    navigation_timeout_ms: int = Field(default=60000, ge=1000)
    fallback_settle_ms: int = Field(default=5000, ge=0, description="Delay after domcontentloaded fallback")
    content_settle_ms: int = Field(default=2000, ge=0, description="Delay for dynamic content after load")
    lazy_load_max_steps: int = Field(default=50, ge=1, description="Scroll steps to trigger lazy content")
    thumbnail_width: int = Field(default=300, ge=1)
    thumbnail_height: int = Field(default=200, ge=1)
    auto_scroll_max_attempts: int = Field(default=50, ge=1)
    group_clear_grace_seconds: float = Field(default=3.0, ge=0)


class CrawlSettings(BaseModel):
    """Crawl discovery settings."""

    timeout_ms: int = Field(default=30000, ge=1000)
    max_pages: int = Field(default=50, ge=1)
    max_depth: int = Field(default=2, ge=1)


class NotificationSettings(BaseModel):
    """Progress notification backend settings."""

    backend: str = Field(default="memory", description="memory or redis")
    redis_url: Optional[str] = None

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        if v not in {'memory', 'redis'}:
            raise ValueError("Notification backend must be 'memory' or 'redis'")
        return v


class WebshotSettings(BaseModel):
    """Root configuration for the pipeline."""

    environment: str = Field(default="production", description="Environment name")
    database_url: Optional[str] = Field(default=None, description="SQLAlchemy async URL")
    asset_root: str = Field(default="./uploads", description="Root directory for captured images")
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    environments: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Environment-specific overrides"
    )

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_environments = {'production', 'staging', 'development', 'test'}
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v


# Environment variable -> (section, field, converter)
ENV_OVERRIDES = {
    'DATABASE_URL': (None, 'database_url', str),
    'ASSET_STORAGE_PATH': (None, 'asset_root', str),
    'SCREENSHOT_TIMEOUT': ('capture', 'navigation_timeout_ms', int),
    'CRAWL_TIMEOUT': ('crawl', 'timeout_ms', int),
    'CRAWL_MAX_PAGES': ('crawl', 'max_pages', int),
    'WEBSHOT_CONCURRENCY': ('scheduler', 'concurrency', int),
    'WEBSHOT_POLL_INTERVAL': ('scheduler', 'poll_interval_seconds', float),
    'REDIS_URL': ('notifications', 'redis_url', str),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_environment_variables(data: Dict[str, Any]) -> Dict[str, Any]:
    for env_var, (section, field, converter) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            value = converter(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_var}: {raw!r}")
            continue

        if section is None:
            data[field] = value
        else:
            data.setdefault(section, {})[field] = value

    # A configured Redis URL selects the Redis backend over any file setting
    if os.environ.get('REDIS_URL'):
        data.setdefault('notifications', {})['backend'] = 'redis'

    return data


def load_settings(config_path: Optional[Union[str, Path]] = None) -> WebshotSettings:
    """Load settings from YAML, environment overrides and environment variables.

    Args:
        config_path: Path to YAML file. Defaults to ``WEBSHOT_CONFIG`` or
            ``config/webshot.yaml``; a missing file yields defaults.

    Returns:
        Validated settings

    Raises:
        yaml.YAMLError: If the YAML file is invalid
    """
    path = Path(config_path or os.environ.get('WEBSHOT_CONFIG', 'config/webshot.yaml'))
    data: Dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {path}: {e}")
        logger.debug(f"Loaded configuration from {path}")

    environment = os.environ.get('WEBSHOT_ENV', data.get('environment', 'production'))
    data['environment'] = environment

    env_overrides = data.get('environments', {}).get(environment)
    if env_overrides:
        data = _deep_merge(data, env_overrides)

    data = _apply_environment_variables(data)
    return WebshotSettings(**data)
