"""
Media API Router - upload targets, folders and moves for the media library.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth import get_account_id
from app.dependencies import get_media_library
from app.schemas.requests import CreateFolderRequest, MoveRequest, UploadRequest
from app.schemas.responses import (
    CreateFolderResponse,
    FolderListResponse,
    MediaFolderResponse,
    MoveResponse,
    MoveResultItem,
    UploadTargetResponse,
)
from app.services.media_library import FileToMove, MediaLibraryService

router = APIRouter(prefix="/api/media", tags=["Media"])


@router.post("/upload", response_model=UploadTargetResponse)
async def create_upload(
    body: UploadRequest,
    account_id: str = Depends(get_account_id),
    library: MediaLibraryService = Depends(get_media_library),
):
    """
    Admit an upload and return a signed URL to send the file to.

    The file is checked against the per-file ceiling and the account quota
    before any target is created.
    """
    target = await library.create_upload(
        account_id,
        file_name=body.file_name,
        file_size=body.file_size,
        mime_type=body.mime_type,
        folder=body.folder,
    )
    return UploadTargetResponse(
        path=target.path,
        file_id=target.file_id,
        signed_url=target.signed_url,
    )


@router.post("/move", response_model=MoveResponse)
async def move_files(
    body: MoveRequest,
    account_id: str = Depends(get_account_id),
    library: MediaLibraryService = Depends(get_media_library),
):
    """Move files into another folder. Each file succeeds or fails on its own."""
    files = [
        FileToMove(id=item.id, name=item.name, current_folder=item.current_folder)
        for item in body.files
    ]
    report = await library.move_files(account_id, files, body.destination_folder)

    return MoveResponse(
        success=report.success,
        moved=report.moved,
        failed=report.failed,
        results=[
            MoveResultItem(id=result.id, success=result.success, error=result.error)
            for result in report.results
        ],
    )


@router.get("/folders", response_model=FolderListResponse)
async def list_folders(
    parent: Optional[str] = Query(None, description="Parent folder, the library root when omitted"),
    account_id: str = Depends(get_account_id),
    library: MediaLibraryService = Depends(get_media_library),
):
    """List the folders directly inside a folder, sorted by name."""
    folders = await library.list_folders(account_id, parent)
    return FolderListResponse(
        folders=[MediaFolderResponse(name=folder.name, path=folder.path) for folder in folders]
    )


@router.post("/folders", response_model=CreateFolderResponse)
async def create_folder(
    body: CreateFolderRequest,
    account_id: str = Depends(get_account_id),
    library: MediaLibraryService = Depends(get_media_library),
):
    """Create a folder. Reserved characters in the name are replaced with ``_``."""
    folder = await library.create_folder(account_id, body.name, body.parent_folder)
    return CreateFolderResponse(folder=MediaFolderResponse(name=folder.name, path=folder.path))
