"""
Stuck-Job Reaper - fails renders abandoned by the worker pool.

A worker that crashes or times out never reports a terminal status, so its
job would stay queued or processing forever. The reaper fails every active
job created before ``now - timeout``. Sweeps are idempotent.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.config import Settings, get_settings
from app.services.job_store import JobStore
from app.services.render_jobs import ACTIVE_STATUSES, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    cleaned: int = 0
    job_ids: list[str] = field(default_factory=list)


class StuckJobReaper:
    """Converts long-running non-terminal render jobs to failed."""

    def __init__(
        self,
        job_store: JobStore,
        timeout_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.job_store = job_store
        self.timeout_minutes = timeout_minutes or settings.stuck_render_timeout_minutes
        self._clock = clock

    @property
    def timeout_message(self) -> str:
        return f"Render timed out after {self.timeout_minutes} minutes"

    async def sweep(self) -> SweepResult:
        """
        Fail every queued or processing job older than the timeout.

        Jobs that reach a terminal state between selection and update are
        left untouched and not counted.

        Returns:
            SweepResult with the number of jobs transitioned
        """
        cutoff = self._clock() - timedelta(minutes=self.timeout_minutes)
        stuck = await self.job_store.list_by_status_before(ACTIVE_STATUSES, cutoff)
        if not stuck:
            logger.info("No stuck render jobs found")
            return SweepResult()

        failed = await self.job_store.bulk_mark_failed(
            [job.id for job in stuck], self.timeout_message
        )
        if failed:
            logger.warning(f"Marked {len(failed)} stuck render jobs as failed: {failed}")
        return SweepResult(cleaned=len(failed), job_ids=failed)
