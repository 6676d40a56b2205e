"""
Request schemas for the render API.

Bodies use camelCase keys on the wire; fields can also be populated by their
Python names.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Resolution(CamelModel):
    width: int = Field(1080, gt=0, le=7680)
    height: int = Field(1920, gt=0, le=7680)


class StartRenderRequest(CamelModel):
    """Request body for POST /api/render/start."""

    media_files: list[dict[str, Any]] = Field(
        default_factory=list, description="Timeline media clips"
    )
    text_elements: list[dict[str, Any]] = Field(
        default_factory=list, description="Timeline text overlays"
    )
    export_settings: dict[str, Any] = Field(default_factory=dict)
    total_duration: Optional[float] = Field(
        None, ge=0, description="Timeline duration in seconds (defaults to 30)"
    )
    resolution: Optional[Resolution] = None
    fps: int = Field(30, gt=0, le=120)
    project_name: Optional[str] = None
    batch_id: Optional[str] = Field(None, description="Set by batch submission")
    batch_index: Optional[int] = Field(None, ge=0, description="Position within the batch")

    @property
    def has_content(self) -> bool:
        return bool(self.media_files or self.text_elements)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "mediaFiles": [{"url": "user-1/intro.mp4", "start": 0, "duration": 12}],
                "textElements": [{"text": "Hello", "start": 1, "duration": 3}],
                "exportSettings": {"quality": "high"},
                "totalDuration": 12,
                "resolution": {"width": 1080, "height": 1920},
                "fps": 30,
                "projectName": "Launch teaser",
            }
        },
    )


class BatchRenderRequest(CamelModel):
    """Request body for POST /api/render/batch."""

    renders: list[StartRenderRequest] = Field(..., min_length=1)


class StorageCheckRequest(CamelModel):
    """Request body for POST /api/storage/check-limit."""

    file_size: Optional[float] = Field(None, description="Upload size in bytes")
    mime_type: Optional[str] = None


class UploadRequest(CamelModel):
    """Request body for POST /api/media/upload."""

    file_name: str = Field(..., min_length=1)
    file_size: float
    mime_type: str = Field(..., min_length=1)
    folder: Optional[str] = Field(None, description="Destination folder inside the media library")


class MoveFileItem(CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    current_folder: Optional[str] = None


class MoveRequest(CamelModel):
    """Request body for POST /api/media/move."""

    files: list[MoveFileItem] = Field(..., min_length=1)
    destination_folder: Optional[str] = Field(None, description="None moves files to the root")


class CreateFolderRequest(CamelModel):
    """Request body for POST /api/media/folders."""

    name: str = Field(..., min_length=1)
    parent_folder: Optional[str] = None


class RenderZipRequest(CamelModel):
    """Request body for POST /api/renders/zip."""

    render_ids: list[str] = Field(default_factory=list)
