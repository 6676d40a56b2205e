"""
Render submission - admission, job creation and queueing.
"""

import logging
import uuid
from typing import Callable, Optional, Sequence

from app.config import AccountTier
from app.errors import InvalidRequestError, TransientUpstreamError
from app.schemas.requests import StartRenderRequest
from app.services.admission_gate import AdmissionGate
from app.services.batch_submission import BatchSubmission, submit_batch
from app.services.job_store import JobStore
from app.services.render_jobs import Failed, RenderJob
from app.services.subscriptions import SubscriptionDirectory
from app.services.work_queue import WorkQueue, render_message

logger = logging.getLogger(__name__)

ENQUEUE_FAILURE_MESSAGE = "Failed to queue render job"


class RenderSubmissionService:
    """
    Creates render jobs and hands them to the worker pool.

    The quota check and the job insert are separate steps; concurrent
    submissions from one account may both pass the check.
    """

    def __init__(
        self,
        job_store: JobStore,
        work_queue: WorkQueue,
        admission_gate: AdmissionGate,
        subscriptions: SubscriptionDirectory,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.job_store = job_store
        self.work_queue = work_queue
        self.admission_gate = admission_gate
        self.subscriptions = subscriptions
        self._new_id = id_factory

    async def submit_one(self, account_id: str, request: StartRenderRequest) -> RenderJob:
        """
        Submit a single render.

        Args:
            account_id: Authenticated account
            request: Timeline and output settings to render

        Returns:
            The queued RenderJob

        Raises:
            InvalidRequestError: If the timeline has no media and no text
            QuotaExceededError: If the estimated output does not fit the quota
            TransientUpstreamError: If the job could not be queued (the job is marked failed)
        """
        if not request.has_content:
            raise InvalidRequestError(
                "No media files or text elements provided", reason="empty_render"
            )

        resolution = request.resolution
        await self.admission_gate.check_render(
            account_id,
            duration_seconds=request.total_duration,
            width=resolution.width if resolution else None,
            height=resolution.height if resolution else None,
        )

        tier = await self.subscriptions.tier_for(account_id)
        input_data = request.model_dump(
            by_alias=True, exclude={"batch_id", "batch_index"}, exclude_none=True
        )
        input_data["isPremium"] = tier == AccountTier.PREMIUM

        job = RenderJob(
            id=self._new_id(),
            account_id=account_id,
            input_data=input_data,
            batch_id=request.batch_id,
            batch_index=request.batch_index,
        )
        await self.job_store.create(job)

        try:
            await self.work_queue.enqueue(render_message(job.id, account_id))
        except TransientUpstreamError:
            await self.job_store.update_status(job.id, state=Failed(ENQUEUE_FAILURE_MESSAGE))
            raise

        logger.info(f"Render job {job.id} queued for {account_id}")
        return job

    async def submit_many(
        self, account_id: str, requests: Sequence[StartRenderRequest]
    ) -> BatchSubmission:
        """
        Submit a batch of renders concurrently under one batch id.

        Raises:
            AllSubmissionsFailedError: If no render could be started
        """

        async def _submit(request: StartRenderRequest) -> str:
            job = await self.submit_one(account_id, request)
            return job.id

        return await submit_batch(requests, _submit)
