"""
Storage API Router - quota summary and upload pre-checks.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.auth import get_account_id
from app.dependencies import get_admission_gate
from app.errors import InvalidRequestError, QuotaExceededError
from app.schemas.requests import StorageCheckRequest
from app.schemas.responses import StorageCheckResponse, StorageUsageResponse
from app.services.admission_gate import AdmissionGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storage", tags=["Storage"])


@router.get("/check-limit", response_model=StorageUsageResponse)
async def get_storage_usage(
    account_id: str = Depends(get_account_id),
    gate: AdmissionGate = Depends(get_admission_gate),
):
    """
    Get current storage usage, the account's ceiling and the per-file limit.
    """
    report = await gate.describe(account_id)
    usage = report.usage

    return StorageUsageResponse(
        is_premium=report.is_premium,
        used_bytes=usage.total_used_bytes,
        limit_bytes=report.limit_bytes,
        remaining_bytes=report.remaining_bytes,
        usage_percentage=report.usage_percentage,
        file_count=usage.file_count,
        max_file_size=report.max_file_size_bytes,
        media_library_bytes=usage.media_library_bytes,
        renders_bytes=usage.renders_bytes,
        media_file_count=usage.media_file_count,
        render_file_count=usage.render_file_count,
        degraded=usage.degraded,
    )


@router.post("/check-limit", response_model=StorageCheckResponse)
async def check_upload_limit(
    body: StorageCheckRequest,
    account_id: str = Depends(get_account_id),
    gate: AdmissionGate = Depends(get_admission_gate),
):
    """
    Check whether a file of the given size and type may be uploaded.

    Rejections carry ``canUpload: false`` together with the reason.
    """
    try:
        decision = await gate.check_upload(account_id, body.file_size, body.mime_type)
    except (InvalidRequestError, QuotaExceededError) as e:
        logger.info(f"Upload check rejected for {account_id}: {e.reason}")
        return JSONResponse(
            status_code=e.status_code,
            content={"canUpload": False, **e.to_dict()},
        )

    return StorageCheckResponse.model_validate({"canUpload": True, **decision.to_dict()})
