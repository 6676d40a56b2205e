"""
Render job model and its state machine.

A job's status is a closed set of variants. Result fields live on the variant
that owns them, so a completed job always has a download URL and only a
failed job has an error message.

Allowed transitions::

    queued -> processing -> completed | failed
    queued -> completed | failed

Terminal jobs never change again.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from app.errors import InvalidTransitionError


class JobStatus(str, Enum):
    """Render job lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        return {JobStatus.QUEUED: 0, JobStatus.PROCESSING: 1}.get(self, 2)


ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})

DEFAULT_FAILURE_MESSAGE = "Render failed"


@dataclass(frozen=True)
class Queued:
    status: ClassVar[JobStatus] = JobStatus.QUEUED


@dataclass(frozen=True)
class Processing:
    status: ClassVar[JobStatus] = JobStatus.PROCESSING


@dataclass(frozen=True)
class Completed:
    status: ClassVar[JobStatus] = JobStatus.COMPLETED

    download_url: str
    thumbnail_url: Optional[str] = None
    file_size_bytes: Optional[int] = None


@dataclass(frozen=True)
class Failed:
    status: ClassVar[JobStatus] = JobStatus.FAILED

    error_message: str = DEFAULT_FAILURE_MESSAGE


JobState = Union[Queued, Processing, Completed, Failed]


def state_from_fields(
    status: str,
    download_url: Optional[str] = None,
    thumbnail_url: Optional[str] = None,
    error_message: Optional[str] = None,
    file_size_bytes: Optional[int] = None,
) -> JobState:
    """
    Build a state variant from a flat record (worker row or API payload).

    Raises:
        ValueError: If the status is unknown, or completed without a download URL
    """
    status = JobStatus(status)
    if status == JobStatus.QUEUED:
        return Queued()
    if status == JobStatus.PROCESSING:
        return Processing()
    if status == JobStatus.COMPLETED:
        if not download_url:
            raise ValueError("Completed render has no download URL")
        return Completed(download_url, thumbnail_url, file_size_bytes)
    return Failed(error_message or DEFAULT_FAILURE_MESSAGE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStateView:
    """Read access to the fields of a ``state`` variant."""

    state: JobState

    @property
    def status(self) -> JobStatus:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def download_url(self) -> Optional[str]:
        return self.state.download_url if isinstance(self.state, Completed) else None

    @property
    def thumbnail_url(self) -> Optional[str]:
        return self.state.thumbnail_url if isinstance(self.state, Completed) else None

    @property
    def file_size_bytes(self) -> Optional[int]:
        return self.state.file_size_bytes if isinstance(self.state, Completed) else None

    @property
    def error_message(self) -> Optional[str]:
        return self.state.error_message if isinstance(self.state, Failed) else None


@dataclass(frozen=True)
class RenderJob(JobStateView):
    """
    One render request tracked through the worker pool.

    Instances are immutable; ``apply`` returns the next version of the job.
    """

    id: str
    account_id: str
    state: JobState = field(default_factory=Queued)
    progress: int = 0
    input_data: dict[str, Any] = field(default_factory=dict)
    batch_id: Optional[str] = None
    batch_index: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def apply(
        self,
        state: Optional[JobState] = None,
        progress: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> "RenderJob":
        """
        Apply a status and/or progress update.

        Progress is clamped to 0..100 and never moves backwards; completion
        pins it to 100. ``updated_at`` strictly advances on every update.

        Args:
            state: New state variant, or None to keep the current one
            progress: New progress percentage, or None to keep the current one
            now: Update timestamp (defaults to the current UTC time)

        Returns:
            The updated job

        Raises:
            InvalidTransitionError: If the job is terminal or the status would move backwards
        """
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Render job {self.id} is already {self.status.value}",
                jobId=self.id,
                status=self.status.value,
            )

        new_state = self.state if state is None else state
        if new_state.status.rank < self.status.rank:
            raise InvalidTransitionError(
                f"Render job {self.id} cannot move from {self.status.value} "
                f"to {new_state.status.value}",
                jobId=self.id,
                status=self.status.value,
            )

        new_progress = self.progress
        if progress is not None:
            new_progress = max(self.progress, min(100, max(0, int(progress))))

        now = now or utcnow()
        if now <= self.updated_at:
            now = self.updated_at + timedelta(microseconds=1)

        completed_at = self.completed_at
        if isinstance(new_state, Completed):
            new_progress = 100
            completed_at = now

        return replace(
            self,
            state=new_state,
            progress=new_progress,
            updated_at=now,
            completed_at=completed_at,
        )
