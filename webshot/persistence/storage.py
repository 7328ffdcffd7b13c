"""Asset storage backends for captured images.

Paths handed to and returned from an ``AssetStore`` are canonical relative
paths (``screenshots/<id>/full.png``); the backend decides where they live.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import aiofiles

logger = logging.getLogger(__name__)


class AssetRef:
    """Reference to a stored asset."""

    def __init__(self, path: str, checksum: str, size_bytes: int, content_type: Optional[str] = None):
        self.path = path
        self.checksum = checksum
        self.size_bytes = size_bytes
        self.content_type = content_type

    def __repr__(self) -> str:
        return f"AssetRef(path={self.path!r}, size_bytes={self.size_bytes})"


def capture_asset_dir(capture_id: str, group_id: Optional[str] = None) -> str:
    """Deterministic directory for a capture's assets."""
    if group_id:
        return f"collections/{group_id}/{capture_id}"
    return f"screenshots/{capture_id}"


class AssetStore(ABC):
    """Abstract base class for asset storage backends."""

    @abstractmethod
    async def put(self, content: bytes, path: str, content_type: Optional[str] = None) -> AssetRef:
        """Create or overwrite the asset at ``path``.

        Args:
            content: Raw bytes to store
            path: Canonical relative path
            content_type: MIME content type

        Returns:
            AssetRef with storage details
        """
        pass

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read an asset.

        Raises:
            FileNotFoundError: If the asset does not exist
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete an asset; False if it did not exist."""
        pass

    def _calculate_checksum(self, content: bytes) -> str:
        """Calculate SHA-256 checksum of content."""
        return hashlib.sha256(content).hexdigest()


class LocalAssetStore(AssetStore):
    """Local filesystem asset storage backend."""

    def __init__(self, base_path: Union[str, Path] = "./uploads"):
        """Initialize local storage.

        Args:
            base_path: Base directory for asset storage
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        file_path = (self.base_path / path).resolve()
        if self.base_path.resolve() not in file_path.parents:
            raise ValueError(f"Asset path escapes storage root: {path}")
        return file_path

    async def put(self, content: bytes, path: str, content_type: Optional[str] = None) -> AssetRef:
        """Store asset in local filesystem."""
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(file_path, 'wb') as f:
            await f.write(content)

        logger.debug(f"Stored asset {path} ({len(content)} bytes)")
        return AssetRef(
            path=path,
            checksum=self._calculate_checksum(content),
            size_bytes=len(content),
            content_type=content_type,
        )

    async def read(self, path: str) -> bytes:
        file_path = self._resolve(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Asset not found: {path}")

        async with aiofiles.open(file_path, 'rb') as f:
            return await f.read()

    async def exists(self, path: str) -> bool:
        """Check if asset file exists."""
        return self._resolve(path).exists()

    async def delete(self, path: str) -> bool:
        file_path = self._resolve(path)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True
