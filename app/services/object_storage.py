"""
Object storage contract shared by the S3 and local filesystem backends.

Storage is hierarchical: every account owns a folder named after its account
id inside each storage area, and folders may nest arbitrarily.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from app.config import Settings, get_settings


class StorageArea(str, Enum):
    """Independent storage areas counted against the account quota."""

    MEDIA_LIBRARY = "media-library"
    RENDERS = "renders"


@dataclass(frozen=True)
class StorageEntry:
    """One immediate child of a listed folder."""

    name: str
    is_folder: bool = False
    size: Optional[int] = None  # Declared size in bytes, files only


@dataclass
class ListingPage:
    """A single page of a folder listing."""

    entries: list[StorageEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None  # None when the listing is exhausted


class ObjectStorage(Protocol):
    """Operations the service needs from a blob store."""

    async def list_page(
        self,
        area: StorageArea,
        folder: str,
        limit: int,
        cursor: Optional[str] = None,
    ) -> ListingPage:
        """List immediate children of ``folder``. Raises TransientUpstreamError."""
        ...

    async def move(self, area: StorageArea, source: str, destination: str) -> None:
        """Move one object. Raises ObjectNotFoundError if ``source`` is missing."""
        ...

    async def read(self, area: StorageArea, path: str) -> bytes:
        """Whole object contents. Raises ObjectNotFoundError if ``path`` is missing."""
        ...

    async def write(self, area: StorageArea, path: str, data: bytes) -> Any:
        """Store ``data`` at ``path``, replacing any existing object."""
        ...

    async def signed_download_url(
        self, area: StorageArea, path: str, expires_in: int
    ) -> Optional[str]:
        """Time-limited read URL, or None when the object does not exist."""
        ...

    async def signed_upload_url(self, area: StorageArea, path: str, expires_in: int) -> str:
        ...


def build_object_storage(settings: Optional[Settings] = None) -> ObjectStorage:
    """
    Create the storage backend selected by STORAGE_BACKEND.

    Args:
        settings: Settings to use (defaults to the cached settings)

    Returns:
        S3ObjectStorage or LocalObjectStorage
    """
    settings = settings or get_settings()

    if settings.storage_backend == "local":
        from app.services.local_storage_service import LocalObjectStorage

        return LocalObjectStorage(root=settings.local_storage_root)

    from app.services.s3_client import S3ObjectStorage

    return S3ObjectStorage(settings=settings)
