"""Persistence layer: capture record store, durable job queue and asset storage."""

from .database import Base, DatabaseConfig
from .models import CaptureGroupRecord, CaptureRecord, JobRecord
from .store import CaptureStore
from .storage import AssetRef, AssetStore, LocalAssetStore, capture_asset_dir

__all__ = [
    "Base",
    "DatabaseConfig",
    "CaptureGroupRecord",
    "CaptureRecord",
    "JobRecord",
    "CaptureStore",
    "AssetRef",
    "AssetStore",
    "LocalAssetStore",
    "capture_asset_dir",
]
