"""
Tests for the render job state machine and the in-memory job store.
"""

from datetime import timedelta

import pytest

from app.errors import InvalidRequestError, InvalidTransitionError, JobNotFoundError
from app.services.render_jobs import (
    DEFAULT_FAILURE_MESSAGE,
    Completed,
    Failed,
    JobStatus,
    Processing,
    Queued,
    RenderJob,
    state_from_fields,
)


def make_job(job_id="job-1", account_id="user-1", created_at=None, **kwargs):
    if created_at is not None:
        kwargs.update(created_at=created_at, updated_at=created_at)
    return RenderJob(id=job_id, account_id=account_id, **kwargs)


class TestRenderJobTransitions:
    """Test status and progress rules on RenderJob.apply."""

    def test_new_job_is_queued_at_zero(self):
        job = make_job()

        assert job.status == JobStatus.QUEUED
        assert job.progress == 0
        assert job.is_terminal is False
        assert job.download_url is None
        assert job.error_message is None

    def test_processing_with_progress(self):
        job = make_job().apply(Processing(), progress=40)

        assert job.status == JobStatus.PROCESSING
        assert job.progress == 40

    def test_progress_never_moves_backwards(self):
        job = make_job().apply(Processing(), progress=60)

        job = job.apply(progress=30)

        assert job.progress == 60

    def test_progress_is_clamped(self):
        job = make_job().apply(Processing(), progress=250)

        assert job.progress == 100

    def test_completion_pins_progress_and_records_result(self, clock):
        job = make_job(created_at=clock()).apply(Processing(), progress=10, now=clock())

        job = job.apply(
            Completed("https://cdn/video.mp4", "https://cdn/thumb.jpg", 2048),
            now=clock() + timedelta(seconds=5),
        )

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.download_url == "https://cdn/video.mp4"
        assert job.thumbnail_url == "https://cdn/thumb.jpg"
        assert job.file_size_bytes == 2048
        assert job.completed_at == clock() + timedelta(seconds=5)

    def test_queued_job_may_fail_directly(self):
        job = make_job().apply(Failed("Worker crashed"))

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Worker crashed"
        assert job.download_url is None

    @pytest.mark.parametrize("terminal", [Completed("https://cdn/v.mp4"), Failed()])
    @pytest.mark.parametrize("update", [Processing(), Queued(), Completed("https://x"), Failed()])
    def test_terminal_jobs_never_change(self, terminal, update):
        job = make_job().apply(terminal)

        with pytest.raises(InvalidTransitionError):
            job.apply(update)

    def test_status_cannot_move_backwards(self):
        job = make_job().apply(Processing())

        with pytest.raises(InvalidTransitionError):
            job.apply(Queued())

    def test_updated_at_strictly_increases(self, clock):
        job = make_job(created_at=clock())

        first = job.apply(progress=1, now=clock())
        second = first.apply(progress=2, now=clock())

        assert job.updated_at < first.updated_at < second.updated_at

    def test_failed_default_message(self):
        assert Failed().error_message == DEFAULT_FAILURE_MESSAGE


class TestStateFromFields:
    """Test building state variants from flat records."""

    def test_completed_requires_download_url(self):
        with pytest.raises(ValueError):
            state_from_fields("completed")

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValueError):
            state_from_fields("paused")

    def test_failed_without_message_gets_default(self):
        assert state_from_fields("failed") == Failed(DEFAULT_FAILURE_MESSAGE)

    def test_result_fields_are_kept_only_on_completed(self):
        state = state_from_fields(
            "processing", download_url="https://x", error_message="ignored"
        )

        assert state == Processing()


class TestInMemoryJobStore:
    """Test single-row atomic operations of the job store."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, job_store):
        await job_store.create(make_job())

        job = await job_store.get("job-1")

        assert job.account_id == "user-1"
        assert await job_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_create_is_rejected(self, job_store):
        await job_store.create(make_job())

        with pytest.raises(InvalidRequestError):
            await job_store.create(make_job())

    @pytest.mark.asyncio
    async def test_update_missing_job(self, job_store):
        with pytest.raises(JobNotFoundError):
            await job_store.update_status("missing", state=Processing())

    @pytest.mark.asyncio
    async def test_update_uses_store_clock(self, job_store, clock):
        await job_store.create(make_job(created_at=clock() - timedelta(minutes=1)))

        clock.now = clock() + timedelta(minutes=2)
        job = await job_store.update_status("job-1", state=Completed("https://cdn/v.mp4"))

        assert job.completed_at == clock.now
        assert (await job_store.get("job-1")).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_after_terminal_is_rejected(self, job_store):
        await job_store.create(make_job())
        await job_store.update_status("job-1", state=Failed("boom"))

        with pytest.raises(InvalidTransitionError):
            await job_store.update_status("job-1", progress=50)

    @pytest.mark.asyncio
    async def test_list_by_status_before(self, job_store, clock):
        old = clock() - timedelta(hours=1)
        await job_store.create(make_job("old-queued", created_at=old))
        await job_store.create(make_job("old-done", created_at=old, state=Completed("u")))
        await job_store.create(make_job("recent", created_at=clock()))

        jobs = await job_store.list_by_status_before(
            {JobStatus.QUEUED, JobStatus.PROCESSING}, clock() - timedelta(minutes=30)
        )

        assert [job.id for job in jobs] == ["old-queued"]

    @pytest.mark.asyncio
    async def test_bulk_mark_failed_skips_terminal_and_missing_jobs(self, job_store):
        await job_store.create(make_job("a"))
        await job_store.create(make_job("b", state=Processing()))
        await job_store.create(make_job("c", state=Completed("https://cdn/c.mp4")))

        failed = await job_store.bulk_mark_failed(["a", "b", "c", "missing"], "Timed out")

        assert failed == ["a", "b"]
        assert (await job_store.get("a")).error_message == "Timed out"
        assert (await job_store.get("b")).status == JobStatus.FAILED
        assert (await job_store.get("c")).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_list_for_account_newest_first(self, job_store, clock):
        for minutes, job_id in [(30, "oldest"), (10, "newest"), (20, "middle")]:
            await job_store.create(make_job(job_id, created_at=clock() - timedelta(minutes=minutes)))
        await job_store.create(make_job("foreign", account_id="user-2", created_at=clock()))
        await job_store.update_status("middle", state=Failed())

        all_jobs = await job_store.list_for_account("user-1")
        failed = await job_store.list_for_account("user-1", [JobStatus.FAILED])

        assert [job.id for job in all_jobs] == ["newest", "middle", "oldest"]
        assert [job.id for job in failed] == ["middle"]
