"""
Tests for the stuck render job reaper.
"""

from datetime import timedelta

import pytest

from app.services.render_jobs import Completed, JobStatus, Processing, RenderJob
from app.services.stuck_job_reaper import StuckJobReaper


async def add_job(job_store, clock, job_id, minutes_old, **kwargs):
    created_at = clock() - timedelta(minutes=minutes_old)
    await job_store.create(
        RenderJob(
            id=job_id,
            account_id="user-1",
            created_at=created_at,
            updated_at=created_at,
            **kwargs,
        )
    )


@pytest.fixture
def reaper(job_store, clock, settings):
    return StuckJobReaper(job_store, clock=clock, settings=settings)


class TestStuckJobReaper:
    """Test sweeps over abandoned render jobs."""

    @pytest.mark.asyncio
    async def test_fails_only_jobs_older_than_timeout(self, reaper, job_store, clock):
        await add_job(job_store, clock, "stuck", 31, state=Processing())
        await add_job(job_store, clock, "recent", 10)

        result = await reaper.sweep()

        assert result.cleaned == 1
        assert result.job_ids == ["stuck"]
        stuck = await job_store.get("stuck")
        assert stuck.status == JobStatus.FAILED
        assert stuck.error_message == "Render timed out after 30 minutes"
        assert (await job_store.get("recent")).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_sweeps_are_idempotent(self, reaper, job_store, clock):
        await add_job(job_store, clock, "a", 45)
        await add_job(job_store, clock, "b", 60, state=Processing())

        first = await reaper.sweep()
        second = await reaper.sweep()

        assert first.cleaned == 2
        assert second.cleaned == 0

    @pytest.mark.asyncio
    async def test_terminal_jobs_are_left_alone(self, reaper, job_store, clock):
        await add_job(job_store, clock, "done", 120, state=Completed("https://cdn/done.mp4"))

        result = await reaper.sweep()

        assert result.cleaned == 0
        assert (await job_store.get("done")).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_jobs_age_past_the_timeout(self, reaper, job_store, clock):
        await add_job(job_store, clock, "slow", 10)
        assert (await reaper.sweep()).cleaned == 0

        clock.now = clock() + timedelta(minutes=25)

        assert (await reaper.sweep()).cleaned == 1

    @pytest.mark.asyncio
    async def test_custom_timeout(self, job_store, clock, settings):
        reaper = StuckJobReaper(job_store, timeout_minutes=5, clock=clock, settings=settings)
        await add_job(job_store, clock, "short", 6)

        result = await reaper.sweep()

        assert result.cleaned == 1
        assert (await job_store.get("short")).error_message == "Render timed out after 5 minutes"

    @pytest.mark.asyncio
    async def test_reports_only_jobs_it_failed(self, job_store, clock, settings):
        await add_job(job_store, clock, "stuck", 40, state=Processing())
        await add_job(job_store, clock, "finishing", 40, state=Processing())
        list_stuck = job_store.list_by_status_before

        async def list_then_finish(statuses, cutoff):
            jobs = await list_stuck(statuses, cutoff)
            await job_store.update_status("finishing", state=Completed("https://cdn/finishing.mp4"))
            return jobs

        job_store.list_by_status_before = list_then_finish
        reaper = StuckJobReaper(job_store, clock=clock, settings=settings)

        result = await reaper.sweep()

        assert result.cleaned == 1
        assert result.job_ids == ["stuck"]
        assert (await job_store.get("finishing")).status == JobStatus.COMPLETED
