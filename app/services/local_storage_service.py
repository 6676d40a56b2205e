"""
Local Storage Service - Filesystem-backed object storage.

Replaces S3ObjectStorage for local-only deployments and tests.

Layout:
    {root}/
    ├── media-library/{account_id}/...
    └── renders/{account_id}/...
"""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional, Union

from app.errors import InvalidRequestError, ObjectNotFoundError
from app.services.object_storage import ListingPage, StorageArea, StorageEntry

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """
    Object storage over a local directory tree.

    Folders are real directories and object sizes come from the filesystem.
    Listing cursors are plain offsets into the sorted folder contents.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        for area in StorageArea:
            (self.root / area.value).mkdir(parents=True, exist_ok=True)
        logger.info(f"Local object storage root: {self.root}")

    def _resolve(self, area: StorageArea, path: str) -> Path:
        parts = [part for part in path.strip("/").split("/") if part]
        if any(part in (".", "..") for part in parts):
            raise InvalidRequestError(f"Invalid storage path: {path}", reason="invalid_path")
        return self.root.joinpath(StorageArea(area).value, *parts)

    async def write(self, area: StorageArea, path: str, data: bytes) -> Path:
        """Store ``data`` at ``path``, creating parent folders as needed."""
        target = self._resolve(area, path)

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, _write)
        return target

    async def list_page(
        self,
        area: StorageArea,
        folder: str,
        limit: int,
        cursor: Optional[str] = None,
    ) -> ListingPage:
        directory = self._resolve(area, folder)

        def _scan() -> list[StorageEntry]:
            if not directory.is_dir():
                return []
            entries = []
            with os.scandir(directory) as it:
                for item in it:
                    if item.is_dir():
                        entries.append(StorageEntry(name=item.name, is_folder=True))
                    else:
                        entries.append(StorageEntry(name=item.name, size=item.stat().st_size))
            return sorted(entries, key=lambda entry: entry.name)

        loop = asyncio.get_event_loop()
        entries = await loop.run_in_executor(None, _scan)

        offset = int(cursor) if cursor else 0
        page = entries[offset:offset + limit]
        next_offset = offset + len(page)
        next_cursor = str(next_offset) if next_offset < len(entries) else None
        return ListingPage(entries=page, next_cursor=next_cursor)

    async def move(self, area: StorageArea, source: str, destination: str) -> None:
        source_path = self._resolve(area, source)
        destination_path = self._resolve(area, destination)
        if not source_path.is_file():
            raise ObjectNotFoundError(f"Object not found: {source}")

        logger.info(f"Moving {source_path} to {destination_path}")
        destination_path.parent.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None,
            lambda: shutil.move(str(source_path), str(destination_path)),
        )

    async def read(self, area: StorageArea, path: str) -> bytes:
        target = self._resolve(area, path)
        if not target.is_file():
            raise ObjectNotFoundError(f"Object not found: {path}")

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, target.read_bytes)

    async def signed_download_url(
        self, area: StorageArea, path: str, expires_in: int
    ) -> Optional[str]:
        target = self._resolve(area, path)
        if not target.is_file():
            return None
        return f"{target.resolve().as_uri()}?expires={int(time.time()) + expires_in}"

    async def signed_upload_url(self, area: StorageArea, path: str, expires_in: int) -> str:
        target = self._resolve(area, path)
        return f"{target.resolve().as_uri()}?expires={int(time.time()) + expires_in}"
