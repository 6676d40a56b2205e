"""
Job Store - durable record of render jobs.

The contract only assumes atomic single-row operations. Bulk updates are a
sequence of independent row updates, each of which re-checks the row's
current status.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from app.config import Settings, get_settings
from app.errors import InvalidRequestError, JobNotFoundError
from app.services.render_jobs import Failed, JobState, JobStatus, RenderJob, utcnow

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    async def create(self, job: RenderJob) -> str:
        ...

    async def get(self, job_id: str) -> Optional[RenderJob]:
        ...

    async def update_status(
        self,
        job_id: str,
        state: Optional[JobState] = None,
        progress: Optional[int] = None,
    ) -> RenderJob:
        """Raises JobNotFoundError or InvalidTransitionError."""
        ...

    async def list_by_status_before(
        self, statuses: Iterable[JobStatus], cutoff: datetime
    ) -> list[RenderJob]:
        ...

    async def bulk_mark_failed(self, job_ids: Iterable[str], message: str) -> list[str]:
        """Fail every listed job that is still non-terminal. Returns the ids that changed."""
        ...

    async def list_for_account(
        self, account_id: str, statuses: Optional[Iterable[JobStatus]] = None
    ) -> list[RenderJob]:
        ...


class InMemoryJobStore:
    """
    Thread-safe in-process job store.

    Rows are immutable RenderJob values replaced under a lock, so every
    operation on a single row is atomic.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._jobs: dict[str, RenderJob] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def create(self, job: RenderJob) -> str:
        with self._lock:
            if job.id in self._jobs:
                raise InvalidRequestError(f"Render job {job.id} already exists", reason="duplicate_job")
            self._jobs[job.id] = job
        logger.info(f"Created render job {job.id} for {job.account_id}")
        return job.id

    async def get(self, job_id: str) -> Optional[RenderJob]:
        with self._lock:
            return self._jobs.get(job_id)

    async def update_status(
        self,
        job_id: str,
        state: Optional[JobState] = None,
        progress: Optional[int] = None,
    ) -> RenderJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Render job {job_id} not found")
            updated = job.apply(state=state, progress=progress, now=self._clock())
            self._jobs[job_id] = updated
        if updated.status != job.status:
            logger.info(f"Render job {job_id}: {job.status.value} -> {updated.status.value}")
        return updated

    async def list_by_status_before(
        self, statuses: Iterable[JobStatus], cutoff: datetime
    ) -> list[RenderJob]:
        wanted = set(statuses)
        with self._lock:
            return [
                job
                for job in self._jobs.values()
                if job.status in wanted and job.created_at < cutoff
            ]

    async def bulk_mark_failed(self, job_ids: Iterable[str], message: str) -> list[str]:
        failed = []
        for job_id in job_ids:
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None or job.is_terminal:
                    continue
                self._jobs[job_id] = job.apply(state=Failed(message), now=self._clock())
            failed.append(job_id)
        return failed

    async def list_for_account(
        self, account_id: str, statuses: Optional[Iterable[JobStatus]] = None
    ) -> list[RenderJob]:
        wanted = set(statuses) if statuses else None
        with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if job.account_id == account_id and (wanted is None or job.status in wanted)
            ]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)


def build_job_store(settings: Optional[Settings] = None) -> JobStore:
    """Create the job store selected by JOB_STORE_BACKEND."""
    settings = settings or get_settings()
    if settings.job_store_backend == "memory":
        return InMemoryJobStore()

    from app.services.dynamodb_job_store import DynamoDBJobStore

    return DynamoDBJobStore(settings=settings)
