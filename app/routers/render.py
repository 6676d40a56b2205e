"""
Render API Router - submission, status reads, ZIP export and the stuck-job cleanup trigger.
"""

import io
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.auth import get_account_id, verify_cron_secret
from app.dependencies import (
    get_render_query,
    get_render_submission,
    get_stuck_job_reaper,
)
from app.errors import InvalidRequestError
from app.schemas.requests import BatchRenderRequest, RenderZipRequest, StartRenderRequest
from app.schemas.responses import (
    BatchRenderResponse,
    CleanupResponse,
    RenderJobResponse,
    RenderListResponse,
    StartRenderResponse,
)
from app.services.render_jobs import JobStatus
from app.services.render_query import RenderQueryService
from app.services.render_submission import RenderSubmissionService
from app.services.stuck_job_reaper import StuckJobReaper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Render"])


def _parse_statuses(status: Optional[str]) -> Optional[list[JobStatus]]:
    """Parse a comma-separated status filter such as ``queued,processing``."""
    if not status:
        return None
    try:
        return [JobStatus(value.strip()) for value in status.split(",") if value.strip()]
    except ValueError:
        raise InvalidRequestError(
            f"Invalid status filter: {status}. "
            f"Valid statuses: {[s.value for s in JobStatus]}",
            reason="invalid_status",
        )


# ============================================================================
# Submission
# ============================================================================


@router.post("/render/start", response_model=StartRenderResponse)
async def start_render(
    body: StartRenderRequest,
    account_id: str = Depends(get_account_id),
    submission: RenderSubmissionService = Depends(get_render_submission),
):
    """
    Submit a render job.

    The estimated output size is checked against the account quota, then the
    job is recorded and queued for the render workers.
    """
    job = await submission.submit_one(account_id, body)
    return StartRenderResponse(job_id=job.id, status=job.status.value)


@router.post("/render/batch", response_model=BatchRenderResponse)
async def start_batch_render(
    body: BatchRenderRequest,
    account_id: str = Depends(get_account_id),
    submission: RenderSubmissionService = Depends(get_render_submission),
):
    """
    Submit several renders under one batch id.

    Members that fail to start are reported in ``failures`` by batch index.
    The request only fails when no member could be started.
    """
    result = await submission.submit_many(account_id, body.renders)
    return BatchRenderResponse(
        batch_id=result.batch_id,
        job_ids=result.job_ids,
        failures=result.failures,
    )


# ============================================================================
# Status
# ============================================================================


@router.get("/render/{job_id}", response_model=RenderJobResponse)
async def get_render(
    job_id: str,
    account_id: str = Depends(get_account_id),
    query: RenderQueryService = Depends(get_render_query),
):
    """Get the current state of a render job. Completed jobs include signed URLs."""
    return await query.get_job(account_id, job_id)


@router.get("/renders", response_model=RenderListResponse)
async def list_renders(
    status: Optional[str] = Query(None, description="Comma-separated status filter"),
    account_id: str = Depends(get_account_id),
    query: RenderQueryService = Depends(get_render_query),
):
    """List the account's render jobs, newest first."""
    renders = await query.list_jobs(account_id, _parse_statuses(status))
    return RenderListResponse(renders=renders)


# ============================================================================
# Export
# ============================================================================


@router.post("/renders/zip", response_class=StreamingResponse)
async def download_renders_zip(
    body: RenderZipRequest,
    account_id: str = Depends(get_account_id),
    query: RenderQueryService = Depends(get_render_query),
):
    """
    Download up to 20 completed renders as one ZIP archive.

    Entries are named ``video-{n}.mp4`` after the render's position in its batch.
    """
    archive = await query.build_zip(account_id, body.render_ids)
    filename = f"videos-{date.today().isoformat()}.zip"

    return StreamingResponse(
        io.BytesIO(archive),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(archive)),
        },
    )


# ============================================================================
# Cleanup
# ============================================================================


@router.api_route(
    "/renders/cleanup",
    methods=["GET", "POST"],
    response_model=CleanupResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def cleanup_stuck_renders(
    reaper: StuckJobReaper = Depends(get_stuck_job_reaper),
):
    """
    Fail renders stuck in queued or processing past the timeout.

    Called by the scheduler with ``Authorization: Bearer <CRON_SECRET>``.
    """
    result = await reaper.sweep()
    return CleanupResponse(cleaned=result.cleaned)
