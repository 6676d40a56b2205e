"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import (
    BatchRenderRequest,
    CreateFolderRequest,
    MoveRequest,
    RenderZipRequest,
    StartRenderRequest,
    StorageCheckRequest,
    UploadRequest,
)
from app.schemas.responses import (
    BatchRenderResponse,
    CreateFolderResponse,
    FolderListResponse,
    MoveResponse,
    RenderJobResponse,
    StartRenderResponse,
    StorageCheckResponse,
    StorageUsageResponse,
    UploadTargetResponse,
)

__all__ = [
    "StartRenderRequest",
    "BatchRenderRequest",
    "StorageCheckRequest",
    "UploadRequest",
    "MoveRequest",
    "CreateFolderRequest",
    "RenderZipRequest",
    "StartRenderResponse",
    "BatchRenderResponse",
    "RenderJobResponse",
    "StorageUsageResponse",
    "StorageCheckResponse",
    "UploadTargetResponse",
    "MoveResponse",
    "FolderListResponse",
    "CreateFolderResponse",
]
