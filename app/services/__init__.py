"""
Services for the render API.

Includes:
- Storage services (S3 and local object storage, usage accounting, admission)
- Render job services (store, submission, queueing, status reads, reaper)
"""

from app.services.admission_gate import AdmissionGate
from app.services.dynamodb_job_store import DynamoDBJobStore
from app.services.job_store import InMemoryJobStore
from app.services.local_storage_service import LocalObjectStorage
from app.services.media_library import MediaLibraryService
from app.services.render_query import RenderQueryService
from app.services.render_submission import RenderSubmissionService
from app.services.s3_client import S3ObjectStorage
from app.services.storage_accountant import StorageAccountant
from app.services.stuck_job_reaper import StuckJobReaper
from app.services.work_queue import InMemoryWorkQueue, SQSWorkQueue

__all__ = [
    # Storage
    "S3ObjectStorage",
    "LocalObjectStorage",
    "StorageAccountant",
    "AdmissionGate",
    "MediaLibraryService",
    # Render jobs
    "DynamoDBJobStore",
    "InMemoryJobStore",
    "SQSWorkQueue",
    "InMemoryWorkQueue",
    "RenderSubmissionService",
    "RenderQueryService",
    "StuckJobReaper",
]
