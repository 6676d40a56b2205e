"""
Async client for the render API.

Includes:
- RenderApiClient (HTTP calls to the render service)
- PollingEngine (status tracking for many concurrent renders)
- CloudRenderSession (submission + tracking + auto-download)
- ResumableUploader (chunked media uploads)
"""

from app.client.api_client import RenderApiClient, RenderApiError
from app.client.cloud_render import CloudRenderSession
from app.client.downloads import ResultDownloader
from app.client.polling_engine import EngineSnapshot, PollingEngine, TrackedJob
from app.client.resumable_upload import ResumableUploader

__all__ = [
    "RenderApiClient",
    "RenderApiError",
    "CloudRenderSession",
    "ResultDownloader",
    "EngineSnapshot",
    "PollingEngine",
    "TrackedJob",
    "ResumableUploader",
]
