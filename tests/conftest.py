"""Shared test fixtures and configuration for Webshot tests."""

import io
import sys
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from PIL import Image

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from webshot.persistence.database import DatabaseConfig
from webshot.persistence.storage import LocalAssetStore
from webshot.persistence.store import CaptureStore
from webshot.progress.notifications import InMemoryNotificationChannel, ProgressPublisher


def make_png(width: int = 800, height: int = 600, color=(30, 120, 200)) -> bytes:
    """Encode a solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_page(url: str = "https://example.com/", title: str = "Example Domain", screenshot: bytes = None):
    """Playwright page double with async methods and a sync mouse/url surface."""
    page = MagicMock()
    page.url = url
    for name in (
        "goto", "wait_for_timeout", "set_viewport_size", "add_init_script",
        "add_script_tag", "add_style_tag", "evaluate", "query_selector",
        "wait_for_selector", "fill", "select_option", "set_checked", "check",
        "close",
    ):
        setattr(page, name, AsyncMock())
    page.title = AsyncMock(return_value=title)
    page.screenshot = AsyncMock(return_value=screenshot or make_png())
    page.evaluate.return_value = 0
    page.mouse.move = AsyncMock()
    page.mouse.down = AsyncMock()
    page.mouse.up = AsyncMock()
    return page


class FakeBrowserFactory:
    """Browser factory double handing out one prepared page."""

    def __init__(self, page=None):
        self.page_obj = page or make_page()
        self.page_configs = []
        self.get_shared_engine = AsyncMock()
        self.stop = AsyncMock()

    def page(self, config):
        self.page_configs.append(config)
        factory = self

        class _PageContext:
            async def __aenter__(self):
                await factory.get_shared_engine()
                return factory.page_obj

            async def __aexit__(self, exc_type, exc, tb):
                return False

        return _PageContext()


@pytest.fixture
def png_bytes() -> bytes:
    """A small PNG image."""
    return make_png()


@pytest.fixture
def png_factory():
    """Factory for PNG images of a given size."""
    return make_png


@pytest.fixture
def page_factory():
    """Factory for Playwright page doubles."""
    return make_page


@pytest.fixture
def fake_page():
    """Playwright page double."""
    return make_page()


@pytest.fixture
def browser_factory(fake_page):
    """Browser factory double bound to ``fake_page``."""
    return FakeBrowserFactory(fake_page)


@pytest_asyncio.fixture
async def db_config(tmp_path) -> AsyncGenerator[DatabaseConfig, None]:
    """File-backed SQLite database with all tables created."""
    config = DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'webshot-test.db'}")
    await config.create_all()
    yield config
    await config.close()


@pytest_asyncio.fixture
async def store(db_config) -> CaptureStore:
    """Capture record store on the test database."""
    return CaptureStore(db_config)


@pytest.fixture
def asset_store(tmp_path) -> LocalAssetStore:
    """Local asset store rooted in a temporary directory."""
    return LocalAssetStore(base_path=tmp_path / "uploads")


@pytest.fixture
def channel() -> InMemoryNotificationChannel:
    """In-memory notification channel."""
    return InMemoryNotificationChannel()


@pytest.fixture
def publisher(channel) -> ProgressPublisher:
    """Progress publisher over the in-memory channel."""
    return ProgressPublisher(channel)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
