"""
Storage Accountant - recursive usage totals for an account.

Usage is computed fresh on every call by walking the account's folder in both
storage areas. Nothing is cached, so concurrent callers always see current
storage at the cost of one listing per folder per check.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from app.config import Settings, get_settings
from app.services.object_storage import ObjectStorage, StorageArea

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = ".emptyFolderPlaceholder"


@dataclass(frozen=True)
class AreaUsage:
    """Bytes and file count for one storage area (or one subtree of it)."""

    bytes: int = 0
    file_count: int = 0
    degraded: bool = False

    def __add__(self, other: "AreaUsage") -> "AreaUsage":
        return AreaUsage(
            bytes=self.bytes + other.bytes,
            file_count=self.file_count + other.file_count,
            degraded=self.degraded or other.degraded,
        )


@dataclass(frozen=True)
class StorageUsageSnapshot:
    """
    Point-in-time usage for one account across both storage areas.

    ``degraded`` is set when any subtree could not be listed; its bytes were
    counted as zero, so totals are a lower bound rather than exact.
    """

    media_library_bytes: int = 0
    renders_bytes: int = 0
    media_file_count: int = 0
    render_file_count: int = 0
    degraded: bool = False

    @property
    def total_used_bytes(self) -> int:
        return self.media_library_bytes + self.renders_bytes

    @property
    def file_count(self) -> int:
        return self.media_file_count + self.render_file_count

    def to_dict(self) -> dict:
        return {
            "totalUsedBytes": self.total_used_bytes,
            "mediaLibraryBytes": self.media_library_bytes,
            "rendersBytes": self.renders_bytes,
            "mediaFileCount": self.media_file_count,
            "renderFileCount": self.render_file_count,
            "degraded": self.degraded,
        }


def is_hidden_entry(name: str) -> bool:
    """Dotfiles and folder placeholders never count toward usage."""
    return name.startswith(".") or name == PLACEHOLDER_NAME


class StorageAccountant:
    """
    Computes an account's storage usage over nested folder trees.

    Listing failures never propagate: the failed subtree counts as zero and
    the snapshot is flagged as degraded.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        page_size: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the accountant.

        Args:
            storage: Object storage backend to walk
            page_size: Entries requested per listing page (defaults to settings)
            settings: Settings to use (defaults to the cached settings)
        """
        settings = settings or get_settings()
        self.storage = storage
        self.page_size = page_size or settings.listing_page_size

    async def usage(self, account_id: str) -> StorageUsageSnapshot:
        """
        Compute usage for an account across media library and renders.

        Args:
            account_id: Account whose root folder is walked in each area

        Returns:
            StorageUsageSnapshot with per-area bytes and file counts
        """
        media, renders = await asyncio.gather(
            self.folder_usage(StorageArea.MEDIA_LIBRARY, account_id),
            self.folder_usage(StorageArea.RENDERS, account_id),
        )

        snapshot = StorageUsageSnapshot(
            media_library_bytes=media.bytes,
            renders_bytes=renders.bytes,
            media_file_count=media.file_count,
            render_file_count=renders.file_count,
            degraded=media.degraded or renders.degraded,
        )
        if snapshot.degraded:
            logger.warning(
                f"Storage usage for {account_id} is degraded: "
                f"{snapshot.total_used_bytes} bytes counted"
            )
        return snapshot

    async def folder_usage(self, area: StorageArea, folder: str) -> AreaUsage:
        """
        Recursively total one folder.

        Every page of the folder is listed before descending. A failure on any
        page discards the whole folder's total (including its subfolders).
        """
        try:
            files = AreaUsage()
            subfolders = []
            cursor = None
            while True:
                page = await self.storage.list_page(area, folder, self.page_size, cursor)
                for entry in page.entries:
                    if is_hidden_entry(entry.name):
                        continue
                    if entry.is_folder:
                        subfolders.append(f"{folder}/{entry.name}")
                    elif entry.size is not None:
                        files = files + AreaUsage(bytes=entry.size, file_count=1)

                if not page.next_cursor:
                    break
                cursor = page.next_cursor
        except Exception as e:
            logger.error(f"Failed to list {area.value}/{folder}: {e}")
            return AreaUsage(degraded=True)

        total = files
        for subfolder in subfolders:
            total = total + await self.folder_usage(area, subfolder)
        return total
