"""
Response schemas for the render API.

Serialized with camelCase keys, the format consumed by the editor frontend.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.requests import CamelModel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service can accept requests")
    components: dict[str, str] = Field(
        default_factory=dict, description="Status of each service component"
    )


class StartRenderResponse(CamelModel):
    job_id: str
    status: str = "queued"


class BatchRenderResponse(CamelModel):
    batch_id: str
    job_ids: list[str]
    failures: dict[int, str] = Field(
        default_factory=dict, description="Error message per failed batch index"
    )


class RenderJobResponse(CamelModel):
    """Full projection of a render job."""

    id: str
    user_id: str
    status: str
    progress: int
    download_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    file_size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    batch_id: Optional[str] = None
    batch_index: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class RenderListResponse(CamelModel):
    renders: list[RenderJobResponse]


class StorageUsageResponse(CamelModel):
    """Usage summary for GET /api/storage/check-limit."""

    is_premium: bool
    used_bytes: int
    limit_bytes: int
    remaining_bytes: int
    usage_percentage: float
    file_count: int
    max_file_size: int
    media_library_bytes: int
    renders_bytes: int
    media_file_count: int
    render_file_count: int
    degraded: bool = False


class StorageCheckResponse(CamelModel):
    """Successful upload check for POST /api/storage/check-limit."""

    can_upload: bool = True
    is_premium: bool
    used_bytes: int
    limit_bytes: int
    remaining_bytes: int
    requested_bytes: int
    new_total_after_upload: int
    media_library_bytes: int
    renders_bytes: int
    media_file_count: int
    render_file_count: int
    degraded: bool = False


class UploadTargetResponse(CamelModel):
    path: str
    file_id: str
    signed_url: str


class MediaFolderResponse(CamelModel):
    name: str
    path: str


class FolderListResponse(CamelModel):
    folders: list[MediaFolderResponse]


class CreateFolderResponse(CamelModel):
    folder: MediaFolderResponse


class MoveResultItem(CamelModel):
    id: str
    success: bool
    error: Optional[str] = None


class MoveResponse(CamelModel):
    success: bool
    moved: int
    failed: int
    results: list[MoveResultItem]


class CleanupResponse(BaseModel):
    cleaned: int
