"""
Render status reads for the job owner.
"""

import asyncio
import io
import logging
import zipfile
from typing import Iterable, Optional, Sequence

from app.config import Settings, get_settings
from app.errors import (
    InvalidRequestError,
    JobNotFoundError,
    RenderServiceError,
    TransientUpstreamError,
)
from app.schemas.responses import RenderJobResponse
from app.services.job_store import JobStore
from app.services.media_paths import render_thumbnail_path, render_video_path
from app.services.object_storage import ObjectStorage, StorageArea
from app.services.render_jobs import JobStatus, RenderJob

logger = logging.getLogger(__name__)


def job_response(
    job: RenderJob,
    download_url: Optional[str] = None,
    thumbnail_url: Optional[str] = None,
) -> RenderJobResponse:
    """Project a job for the API, preferring freshly signed result URLs."""
    return RenderJobResponse(
        id=job.id,
        user_id=job.account_id,
        status=job.status.value,
        progress=job.progress,
        download_url=download_url or job.download_url,
        thumbnail_url=thumbnail_url or job.thumbnail_url,
        file_size_bytes=job.file_size_bytes,
        error_message=job.error_message,
        batch_id=job.batch_id,
        batch_index=job.batch_index,
        created_at=job.created_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
    )


class RenderQueryService:
    """
    Reads render jobs on behalf of their owner.

    Completed jobs get fresh signed URLs for the video and thumbnail in the
    renders area. Jobs owned by another account are reported as not found.
    """

    def __init__(
        self,
        job_store: JobStore,
        storage: ObjectStorage,
        settings: Optional[Settings] = None,
    ):
        self.job_store = job_store
        self.storage = storage
        self.settings = settings or get_settings()

    async def get_job(self, account_id: str, job_id: str) -> RenderJobResponse:
        """
        Raises:
            JobNotFoundError: If the job does not exist or belongs to another account
        """
        job = await self.job_store.get(job_id)
        if job is None or job.account_id != account_id:
            raise JobNotFoundError("Render job not found", jobId=job_id)

        if job.status != JobStatus.COMPLETED:
            return job_response(job)

        download_url, thumbnail_url = await self._signed_urls(job)
        return job_response(job, download_url, thumbnail_url)

    async def list_jobs(
        self, account_id: str, statuses: Optional[Iterable[JobStatus]] = None
    ) -> list[RenderJobResponse]:
        jobs = await self.job_store.list_for_account(account_id, statuses)
        return [job_response(job) for job in jobs]

    async def build_zip(self, account_id: str, render_ids: Sequence[str]) -> bytes:
        """
        Bundle the account's completed renders into one uncompressed ZIP.

        Entries are named ``video-{n}.mp4`` where ``n`` is the batch index plus
        one, or the position in the request for renders outside a batch. Ids
        that are unknown, foreign or not completed are skipped, as are renders
        whose video cannot be read.

        Args:
            account_id: Account requesting the archive
            render_ids: Render job ids, at most ``max_zip_renders``

        Returns:
            ZIP archive bytes

        Raises:
            InvalidRequestError: If no ids or too many ids are given
            JobNotFoundError: If none of the ids is a completed render of the account
            TransientUpstreamError: If no video could be read
        """
        if not render_ids:
            raise InvalidRequestError("No render IDs provided", reason="no_renders")
        limit = self.settings.max_zip_renders
        if len(render_ids) > limit:
            raise InvalidRequestError(
                f"Maximum {limit} videos allowed per ZIP", reason="too_many_renders"
            )

        jobs = []
        for job_id in dict.fromkeys(render_ids):
            job = await self.job_store.get(job_id)
            if job and job.account_id == account_id and job.status == JobStatus.COMPLETED:
                jobs.append(job)
        if not jobs:
            raise JobNotFoundError("No valid renders found")

        entries: dict[str, bytes] = {}
        for position, job in enumerate(jobs, start=1):
            number = job.batch_index + 1 if job.batch_index is not None else position
            name = f"video-{number}.mp4"
            if name in entries:
                name = f"video-{number}-{job.id}.mp4"
            try:
                entries[name] = await self.storage.read(
                    StorageArea.RENDERS, render_video_path(job.account_id, job.id)
                )
            except RenderServiceError as e:
                logger.warning(f"Skipping render {job.id} in ZIP: {e.message}")

        if not entries:
            raise TransientUpstreamError("Failed to fetch any videos")

        loop = asyncio.get_event_loop()
        archive = await loop.run_in_executor(None, _zip_entries, entries)
        logger.info(f"Built ZIP of {len(entries)} renders for {account_id}")
        return archive

    async def _signed_urls(self, job: RenderJob) -> tuple[Optional[str], Optional[str]]:
        """Sign result URLs, falling back to the stored ones when signing fails."""
        expiry = self.settings.signed_url_expiry_seconds
        try:
            download_url = await self.storage.signed_download_url(
                StorageArea.RENDERS, render_video_path(job.account_id, job.id), expiry
            )
            thumbnail_url = await self.storage.signed_download_url(
                StorageArea.RENDERS, render_thumbnail_path(job.account_id, job.id), expiry
            )
        except RenderServiceError as e:
            logger.warning(f"Could not sign result URLs for render {job.id}: {e.message}")
            return None, None
        return download_url, thumbnail_url


def _zip_entries(entries: dict[str, bytes]) -> bytes:
    # Videos are already compressed
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()
