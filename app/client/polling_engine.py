"""
Polling Engine - client-side status tracking for concurrently running renders.

All state is owned by a single actor task that processes one message at a
time from its inbox:

- ``track``: register job ids (optionally as members of a batch)
- ``start``: begin polling if not already running
- tick: poll every active job that has no poll in flight
- poll result: merge a fetched status and fire callbacks
- ``cancel``: stop polling and forget active jobs and batches
- ``snapshot``: read a consistent copy of the tracked jobs

Status fetches run as separate tasks and report back through the inbox, so
slow responses never block ticks or cancellation. Callbacks run inside the
actor and must not await engine methods.
"""

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping, Optional

from app.config import Settings, get_settings
from app.services.render_jobs import (
    DEFAULT_FAILURE_MESSAGE,
    JobState,
    JobStateView,
    JobStatus,
    Queued,
    state_from_fields,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackedJob(JobStateView):
    """Client-side view of one render job."""

    id: str
    state: JobState = field(default_factory=Queued)
    progress: int = 0
    batch_id: Optional[str] = None
    batch_index: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TrackedJob":
        """
        Build a TrackedJob from a status API response body.

        Raises:
            ValueError: If the status is unknown or inconsistent with its fields
        """
        state = state_from_fields(
            payload["status"],
            download_url=payload.get("downloadUrl"),
            thumbnail_url=payload.get("thumbnailUrl"),
            error_message=payload.get("errorMessage"),
            file_size_bytes=payload.get("fileSizeBytes"),
        )
        return cls(
            id=payload["id"],
            state=state,
            progress=int(payload.get("progress") or 0),
            batch_id=payload.get("batchId"),
            batch_index=payload.get("batchIndex"),
        )


@dataclass(frozen=True)
class EngineSnapshot:
    """Consistent copy of the engine state at one point in time."""

    jobs: tuple[TrackedJob, ...] = ()
    polling: bool = False

    @property
    def active_jobs(self) -> list[TrackedJob]:
        return [job for job in self.jobs if not job.is_terminal]

    @property
    def completed_jobs(self) -> list[TrackedJob]:
        return [job for job in self.jobs if job.status == JobStatus.COMPLETED]

    @property
    def failed_jobs(self) -> list[TrackedJob]:
        return [job for job in self.jobs if job.status == JobStatus.FAILED]

    @property
    def overall_progress(self) -> int:
        """Mean progress over all tracked jobs, halves rounded up. 0 when nothing is tracked."""
        if not self.jobs:
            return 0
        return math.floor(0.5 + sum(job.progress for job in self.jobs) / len(self.jobs))

    def get(self, job_id: str) -> Optional[TrackedJob]:
        for job in self.jobs:
            if job.id == job_id:
                return job
        return None


StatusFetcher = Callable[[str], Awaitable[Optional[TrackedJob]]]
Downloader = Callable[[str, str], Awaitable[Any]]


# ============================================================================
# Messages
# ============================================================================


@dataclass(frozen=True)
class _Track:
    entries: tuple[tuple[str, Optional[int]], ...]
    batch_id: Optional[str] = None


@dataclass(frozen=True)
class _Start:
    pass


@dataclass(frozen=True)
class _Tick:
    pass


@dataclass(frozen=True)
class _PollResult:
    job_id: str
    job: Optional[TrackedJob] = None
    error: Optional[Exception] = None


@dataclass(frozen=True, eq=False)
class _Cancel:
    reply: asyncio.Future


@dataclass(frozen=True, eq=False)
class _Snapshot:
    reply: asyncio.Future


@dataclass(frozen=True, eq=False)
class _AwaitIdle:
    reply: asyncio.Future


@dataclass(frozen=True, eq=False)
class _Shutdown:
    reply: asyncio.Future


class PollingEngine:
    """
    Multiplexes status polls for many render jobs over one timer.

    Guarantees:
    - ``on_complete`` or ``on_error`` fires exactly once per job, on its first
      observed terminal status
    - auto-download runs at most once per completed job
    - ``on_all_complete`` fires exactly once per batch, with the completed
      members in batch order, once every member is terminal
    - after ``cancel`` returns, no callback fires for the cancelled jobs
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        *,
        poll_interval: Optional[float] = None,
        on_complete: Optional[Callable[[TrackedJob], Any]] = None,
        on_error: Optional[Callable[[str, str], Any]] = None,
        on_all_complete: Optional[Callable[[list[TrackedJob]], Any]] = None,
        auto_download: bool = False,
        downloader: Optional[Downloader] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the engine.

        Args:
            fetch_status: Coroutine function returning a job's current status,
                or None if the job is unknown
            poll_interval: Seconds between poll rounds (defaults to settings)
            on_complete: Called with the completed job
            on_error: Called with the job id and its error message
            on_all_complete: Called with the completed members of a finished batch
            auto_download: Download each completed render's video
            downloader: Coroutine function taking (url, filename), required
                when auto_download is set

        Callbacks may be plain functions or coroutine functions. Exceptions
        they raise are logged and do not stop the engine.
        """
        if auto_download and downloader is None:
            raise ValueError("auto_download requires a downloader")

        settings = settings or get_settings()
        self.poll_interval = poll_interval or settings.render_poll_interval_seconds

        self._fetch_status = fetch_status
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_all_complete = on_all_complete
        self._auto_download = auto_download
        self._downloader = downloader

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._actor: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

        # Actor-owned state
        self._jobs: dict[str, TrackedJob] = {}
        self._active: set[str] = set()
        self._in_flight: set[str] = set()
        self._notified: set[str] = set()
        self._downloaded: set[str] = set()
        self._batches: dict[str, set[str]] = {}
        self._timer: Optional[asyncio.Task] = None
        self._idle_waiters: list[asyncio.Future] = []

    # ========================================================================
    # Public interface
    # ========================================================================

    async def track(self, job_id: str, batch_index: Optional[int] = None) -> None:
        """Start tracking a job. Polling begins on the next ``start``."""
        self._send(_Track(entries=((job_id, batch_index),)))

    async def track_batch(self, batch_id: str, members: Mapping[str, int]) -> None:
        """
        Track the members of a batch.

        Args:
            batch_id: Shared batch id
            members: Job id to batch index
        """
        self._send(_Track(entries=tuple(members.items()), batch_id=batch_id))

    async def start(self) -> None:
        """Start polling. No-op while already polling or with nothing to poll."""
        self._send(_Start())

    async def cancel(self) -> None:
        """
        Stop polling and forget active jobs and batches.

        Responses already in flight are still merged into local state but
        fire no callbacks.
        """
        await self._ask(_Cancel)

    async def snapshot(self) -> EngineSnapshot:
        return await self._ask(_Snapshot)

    async def wait_until_idle(self) -> None:
        """Wait until polling stops, i.e. no tracked job is active."""
        await self._ask(_AwaitIdle)

    async def aclose(self) -> None:
        """Stop the actor and any outstanding polls or downloads."""
        if self._actor is not None and not self._actor.done():
            await self._ask(_Shutdown)
            await self._actor

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "PollingEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ========================================================================
    # Mailbox
    # ========================================================================

    def _send(self, message: Any) -> None:
        if self._actor is None or self._actor.done():
            self._actor = asyncio.create_task(self._run())
        self._inbox.put_nowait(message)

    async def _ask(self, message_type: Callable[[asyncio.Future], Any]) -> Any:
        reply = asyncio.get_running_loop().create_future()
        self._send(message_type(reply))
        return await reply

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        while True:
            message = await self._inbox.get()
            if isinstance(message, _Shutdown):
                self._stop_timer()
                message.reply.set_result(None)
                return
            try:
                await self._handle(message)
            except Exception:
                logger.exception(f"Polling engine failed to handle {type(message).__name__}")

    async def _handle(self, message: Any) -> None:
        if isinstance(message, _PollResult):
            await self._on_poll_result(message)
        elif isinstance(message, _Tick):
            self._poll_active()
        elif isinstance(message, _Track):
            await self._on_track(message)
        elif isinstance(message, _Start):
            self._on_start()
        elif isinstance(message, _Cancel):
            self._on_cancel()
            message.reply.set_result(None)
        elif isinstance(message, _Snapshot):
            message.reply.set_result(
                EngineSnapshot(jobs=tuple(self._jobs.values()), polling=self._timer is not None)
            )
        elif isinstance(message, _AwaitIdle):
            if self._timer is None:
                message.reply.set_result(None)
            else:
                self._idle_waiters.append(message.reply)

    # ========================================================================
    # Handlers
    # ========================================================================

    async def _on_track(self, message: _Track) -> None:
        for job_id, batch_index in message.entries:
            existing = self._jobs.get(job_id)
            if existing is None:
                self._jobs[job_id] = TrackedJob(
                    id=job_id, batch_id=message.batch_id, batch_index=batch_index
                )
            elif existing.batch_index is None and batch_index is not None:
                self._jobs[job_id] = replace(
                    existing, batch_id=message.batch_id, batch_index=batch_index
                )

            if not self._jobs[job_id].is_terminal:
                self._active.add(job_id)

        if message.batch_id:
            members = self._batches.setdefault(message.batch_id, set())
            members.update(job_id for job_id, _ in message.entries)
            await self._check_batches()

    def _on_start(self) -> None:
        if self._timer is not None or not self._active:
            return

        logger.info(f"Polling {len(self._active)} render jobs every {self.poll_interval}s")
        self._poll_active()
        self._timer = asyncio.create_task(self._tick_forever())

    def _on_cancel(self) -> None:
        logger.info(f"Cancelling polling for {len(self._active)} render jobs")
        self._stop_timer()
        self._active.clear()
        self._batches.clear()

    async def _on_poll_result(self, result: _PollResult) -> None:
        job_id = result.job_id
        self._in_flight.discard(job_id)

        if result.error is not None:
            logger.warning(f"Status poll for render {job_id} failed: {result.error}")
            return
        if result.job is None:
            logger.warning(f"Render {job_id} not found")
            return

        merged = self._merge(self._jobs.get(job_id), result.job)
        self._jobs[job_id] = merged

        if merged.is_terminal:
            was_active = job_id in self._active
            self._active.discard(job_id)
            if was_active and job_id not in self._notified:
                self._notified.add(job_id)
                await self._fire_terminal(merged)

        await self._check_batches()

        if not self._active:
            self._stop_timer()

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _merge(previous: Optional[TrackedJob], fetched: TrackedJob) -> TrackedJob:
        """Merge a fetched status, keeping local batch data and terminal states."""
        if previous is None:
            return fetched
        if previous.is_terminal:
            return previous
        progress = max(previous.progress, fetched.progress)
        if fetched.status == JobStatus.COMPLETED:
            progress = 100
        return replace(
            fetched,
            progress=progress,
            batch_id=previous.batch_id or fetched.batch_id,
            batch_index=(
                previous.batch_index if previous.batch_index is not None else fetched.batch_index
            ),
        )

    def _poll_active(self) -> None:
        for job_id in list(self._active):
            if job_id in self._in_flight:
                continue
            self._in_flight.add(job_id)
            self._spawn(self._poll(job_id))

    async def _poll(self, job_id: str) -> None:
        try:
            job = await self._fetch_status(job_id)
        except Exception as e:
            self._inbox.put_nowait(_PollResult(job_id=job_id, error=e))
            return
        self._inbox.put_nowait(_PollResult(job_id=job_id, job=job))

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self._inbox.put_nowait(_Tick())

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("Render polling stopped")

        for waiter in self._idle_waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._idle_waiters.clear()

    async def _fire_terminal(self, job: TrackedJob) -> None:
        if job.status == JobStatus.COMPLETED:
            logger.info(f"Render {job.id} completed")
            await self._invoke(self._on_complete, job)
            if self._auto_download and job.id not in self._downloaded:
                self._downloaded.add(job.id)
                self._spawn(self._download(job))
        else:
            message = job.error_message or DEFAULT_FAILURE_MESSAGE
            logger.warning(f"Render {job.id} failed: {message}")
            await self._invoke(self._on_error, job.id, message)

    async def _check_batches(self) -> None:
        for batch_id, members in list(self._batches.items()):
            jobs = [self._jobs[job_id] for job_id in members]
            if not all(job.is_terminal for job in jobs):
                continue

            del self._batches[batch_id]
            completed = sorted(
                (job for job in jobs if job.status == JobStatus.COMPLETED),
                key=lambda job: (job.batch_index is None, job.batch_index or 0),
            )
            logger.info(
                f"Batch {batch_id} finished: {len(completed)}/{len(jobs)} renders completed"
            )
            await self._invoke(self._on_all_complete, completed)

    async def _download(self, job: TrackedJob) -> None:
        filename = f"render_{(job.batch_index or 0) + 1}.mp4"
        try:
            await self._downloader(job.download_url, filename)
        except Exception:
            logger.exception(f"Auto-download of render {job.id} failed")

    async def _invoke(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Render callback {getattr(callback, '__name__', callback)} failed")
