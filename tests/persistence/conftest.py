"""Test configuration and fixtures for persistence layer tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from webshot.models.capture import CaptureKind, GroupKind
from webshot.persistence.dao import CaptureDAO
from webshot.persistence.models import CaptureGroupRecord
from webshot.persistence.store import CaptureStore


@pytest_asyncio.fixture
async def db_session(db_config) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with db_config.session() as session:
        yield session


@pytest_asyncio.fixture
async def dao(db_session: AsyncSession) -> CaptureDAO:
    """Create DAO instance with test session."""
    return CaptureDAO(db_session)


# ============= Test Data Fixtures =============

@pytest.fixture
def frame_group_data():
    """Sample frame group data for testing."""
    return {
        "owner_id": "user-1",
        "kind": GroupKind.FRAME.value,
        "name": "Frame Screenshots of example.com - 2026-10-17 09:00",
        "base_url": "https://example.com",
        "expected_total": 3,
        "params": {"time_frames": [0, 5, 10], "auto_scroll": None},
    }


@pytest_asyncio.fixture
async def frame_group(store: CaptureStore, frame_group_data) -> CaptureGroupRecord:
    """Create a frame group with three pending frame captures."""
    group = await store.create_group(**frame_group_data)
    for index, delay in enumerate(frame_group_data["params"]["time_frames"]):
        await store.create_capture(
            owner_id=group.owner_id,
            url=group.base_url,
            kind=CaptureKind.FRAME.value,
            group_id=group.id,
            metadata={"frame_delay": delay, "frame_index": index + 1, "total_frames": 3},
        )
    return group
