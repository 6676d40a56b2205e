"""
Media Library - upload targets and file moves within an account's library.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from app.config import Settings, get_settings
from app.errors import (
    InvalidRequestError,
    ObjectExistsError,
    ObjectNotFoundError,
    RenderServiceError,
)
from app.services.admission_gate import AdmissionGate
from app.services.media_paths import (
    join_folder,
    legacy_file_name,
    object_path,
    sanitize_folder_name,
    storage_file_name,
)
from app.services.object_storage import ObjectStorage, StorageArea
from app.services.storage_accountant import PLACEHOLDER_NAME

logger = logging.getLogger(__name__)


@dataclass
class UploadTarget:
    path: str
    file_id: str
    signed_url: str


@dataclass
class MediaFolder:
    name: str
    path: str


@dataclass
class FileToMove:
    id: str
    name: str
    current_folder: Optional[str] = None


@dataclass
class MoveOutcome:
    id: str
    success: bool
    error: Optional[str] = None


@dataclass
class MoveReport:
    """Per-file results of a move request."""

    results: list[MoveOutcome] = field(default_factory=list)

    @property
    def moved(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.moved

    @property
    def success(self) -> bool:
        return self.failed == 0


class MediaLibraryService:
    """
    Upload admission, folders and moves for media library objects.

    Files are moved one at a time; a failure only affects that file. Folders
    exist as storage prefixes; an empty folder is kept alive by a hidden
    placeholder object.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        admission_gate: AdmissionGate,
        settings: Optional[Settings] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.storage = storage
        self.admission_gate = admission_gate
        self.settings = settings or get_settings()
        self._new_id = id_factory

    async def create_upload(
        self,
        account_id: str,
        file_name: str,
        file_size: float,
        mime_type: str,
        folder: Optional[str] = None,
    ) -> UploadTarget:
        """
        Admit an upload and create a signed target for it.

        Raises:
            InvalidRequestError: If size or type are not acceptable
            QuotaExceededError: If the file does not fit the account quota
        """
        await self.admission_gate.check_upload(account_id, file_size, mime_type)

        file_id = self._new_id()
        path = object_path(account_id, storage_file_name(file_id, file_name), folder)
        signed_url = await self.storage.signed_upload_url(
            StorageArea.MEDIA_LIBRARY, path, self.settings.signed_url_expiry_seconds
        )

        logger.info(f"Created upload target {path} ({file_size} bytes, {mime_type})")
        return UploadTarget(path=path, file_id=file_id, signed_url=signed_url)

    async def list_folders(self, account_id: str, parent: Optional[str] = None) -> list[MediaFolder]:
        """List the folders directly inside ``parent`` (the account root by default), by name."""
        parent = _clean_parent(parent)
        base = f"{account_id}/{parent}" if parent else account_id
        page_size = self.settings.listing_page_size

        folders = []
        cursor = None
        while True:
            page = await self.storage.list_page(StorageArea.MEDIA_LIBRARY, base, page_size, cursor)
            folders.extend(
                MediaFolder(name=entry.name, path=join_folder(parent, entry.name))
                for entry in page.entries
                if entry.is_folder
            )
            cursor = page.next_cursor
            if cursor is None:
                break
        return sorted(folders, key=lambda folder: folder.name)

    async def create_folder(
        self, account_id: str, name: str, parent: Optional[str] = None
    ) -> MediaFolder:
        """
        Create an empty folder.

        Raises:
            InvalidRequestError: If the name is empty or a relative reference
            ObjectExistsError: If a folder with that name already exists in ``parent``
        """
        folder_name = sanitize_folder_name(name)
        if folder_name in ("", ".", ".."):
            raise InvalidRequestError("Invalid folder name", reason="invalid_folder_name")
        parent = _clean_parent(parent)

        existing = await self.list_folders(account_id, parent)
        if any(folder.name == folder_name for folder in existing):
            raise ObjectExistsError("A folder with this name already exists")

        path = join_folder(parent, folder_name)
        await self.storage.write(
            StorageArea.MEDIA_LIBRARY, object_path(account_id, PLACEHOLDER_NAME, path), b""
        )
        logger.info(f"Created media folder '{path}' for {account_id}")
        return MediaFolder(name=folder_name, path=path)

    async def move_files(
        self,
        account_id: str,
        files: Sequence[FileToMove],
        destination_folder: Optional[str] = None,
    ) -> MoveReport:
        """
        Move files between folders of the account's media library.

        Objects that predate the encoded naming scheme are found under their
        legacy ``{id}.{ext}`` name when the current name does not exist.

        Returns:
            MoveReport with one outcome per requested file
        """
        report = MoveReport()
        for item in files:
            report.results.append(await self._move_one(account_id, item, destination_folder))

        logger.info(
            f"Moved {report.moved} files for {account_id} to "
            f"'{destination_folder or '/'}' ({report.failed} failed)"
        )
        return report

    async def _move_one(
        self, account_id: str, item: FileToMove, destination_folder: Optional[str]
    ) -> MoveOutcome:
        name = storage_file_name(item.id, item.name)
        source = object_path(account_id, name, item.current_folder)
        destination = object_path(account_id, name, destination_folder)
        if source == destination:
            return MoveOutcome(id=item.id, success=True)

        try:
            await self.storage.move(StorageArea.MEDIA_LIBRARY, source, destination)
            return MoveOutcome(id=item.id, success=True)
        except ObjectNotFoundError:
            pass
        except RenderServiceError as e:
            logger.warning(f"Failed to move {source}: {e.message}")
            return MoveOutcome(id=item.id, success=False, error=e.message)

        legacy = legacy_file_name(item.id, item.name)
        try:
            await self.storage.move(
                StorageArea.MEDIA_LIBRARY,
                object_path(account_id, legacy, item.current_folder),
                object_path(account_id, legacy, destination_folder),
            )
        except RenderServiceError as e:
            logger.warning(f"Failed to move {item.id} under its legacy name: {e.message}")
            return MoveOutcome(id=item.id, success=False, error=e.message)

        return MoveOutcome(id=item.id, success=True)


def _clean_parent(parent: Optional[str]) -> Optional[str]:
    parent = (parent or "").strip("/")
    if parent and any(part in ("", ".", "..") for part in parent.split("/")):
        raise InvalidRequestError(f"Invalid folder path: {parent}", reason="invalid_path")
    return parent or None
