"""
Tests for the client-side render polling engine.
"""

import asyncio
from collections import Counter

import pytest

from app.client.polling_engine import EngineSnapshot, PollingEngine, TrackedJob
from app.services.render_jobs import Completed, Failed, JobStatus, Processing, Queued

POLL_INTERVAL = 0.01
TIMEOUT = 2.0


class FakeRenderApi:
    """In-memory status source with per-job gates to hold polls in flight."""

    def __init__(self):
        self.jobs: dict[str, TrackedJob] = {}
        self.calls: Counter = Counter()
        self.gates: dict[str, asyncio.Event] = {}
        self.errors: dict[str, int] = {}

    def set(self, job_id, state, progress=0, batch_index=None):
        self.jobs[job_id] = TrackedJob(
            id=job_id, state=state, progress=progress, batch_index=batch_index
        )

    async def get_render(self, job_id):
        self.calls[job_id] += 1
        gate = self.gates.get(job_id)
        if gate is not None:
            await gate.wait()
        if self.errors.get(job_id):
            self.errors[job_id] -= 1
            raise ConnectionError("network down")
        return self.jobs.get(job_id)


class Recorder:
    def __init__(self):
        self.completed = []
        self.errors = []
        self.batches = []

    def on_complete(self, job):
        self.completed.append(job.id)

    def on_error(self, job_id, message):
        self.errors.append((job_id, message))

    def on_all_complete(self, jobs):
        self.batches.append([job.id for job in jobs])


@pytest.fixture
def api():
    return FakeRenderApi()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def engine(api, recorder, settings):
    engine = PollingEngine(
        api.get_render,
        poll_interval=POLL_INTERVAL,
        on_complete=recorder.on_complete,
        on_error=recorder.on_error,
        on_all_complete=recorder.on_all_complete,
        settings=settings,
    )
    yield engine
    await engine.aclose()


async def wait_idle(engine):
    await asyncio.wait_for(engine.wait_until_idle(), timeout=TIMEOUT)


async def wait_for(predicate):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout=TIMEOUT)


class TestTerminalCallbacks:
    """Test that terminal callbacks fire exactly once per job."""

    @pytest.mark.asyncio
    async def test_completion_fires_on_complete_once(self, engine, api, recorder):
        api.set("a", Processing(), progress=20)
        await engine.track("a")
        await engine.start()

        await wait_for(lambda: api.calls["a"] >= 2)
        api.set("a", Completed("https://cdn/a.mp4"))
        await wait_idle(engine)
        await asyncio.sleep(POLL_INTERVAL * 3)

        assert recorder.completed == ["a"]
        assert recorder.errors == []
        snapshot = await engine.snapshot()
        assert snapshot.polling is False
        assert snapshot.get("a").download_url == "https://cdn/a.mp4"
        assert snapshot.get("a").progress == 100

    @pytest.mark.asyncio
    async def test_failure_fires_on_error_with_message(self, engine, api, recorder):
        api.set("a", Failed("Out of memory"))
        await engine.track("a")
        await engine.start()

        await wait_idle(engine)

        assert recorder.errors == [("a", "Out of memory")]
        assert recorder.completed == []

    @pytest.mark.asyncio
    async def test_terminal_job_is_not_polled_again(self, engine, api, recorder):
        api.set("a", Completed("https://cdn/a.mp4"))
        api.set("b", Processing())
        await engine.track("a")
        await engine.track("b")
        await engine.start()

        await wait_for(lambda: api.calls["b"] >= 5)
        api.set("b", Completed("https://cdn/b.mp4"))
        await wait_idle(engine)

        assert api.calls["a"] == 1
        assert recorder.completed == ["a", "b"]

    @pytest.mark.asyncio
    async def test_retracking_a_finished_job_does_not_refire(self, engine, api, recorder):
        api.set("a", Completed("https://cdn/a.mp4"))
        await engine.track("a")
        await engine.start()
        await wait_idle(engine)

        await engine.track("a")
        await engine.start()
        await wait_idle(engine)

        assert recorder.completed == ["a"]
        assert api.calls["a"] == 1

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_stop_polling(self, api, settings):
        completed = []

        def on_complete(job):
            completed.append(job.id)
            if job.id == "a":
                raise RuntimeError("callback bug")

        api.set("a", Completed("https://cdn/a.mp4"))
        api.set("b", Processing())
        async with PollingEngine(
            api.get_render, poll_interval=POLL_INTERVAL, on_complete=on_complete, settings=settings
        ) as engine:
            await engine.track("a")
            await engine.track("b")
            await engine.start()
            await wait_for(lambda: "a" in completed)
            api.set("b", Completed("https://cdn/b.mp4"))
            await wait_idle(engine)

        assert sorted(completed) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, api, settings):
        errors = []

        async def on_error(job_id, message):
            await asyncio.sleep(0)
            errors.append(job_id)

        api.set("a", Failed())
        async with PollingEngine(
            api.get_render, poll_interval=POLL_INTERVAL, on_error=on_error, settings=settings
        ) as engine:
            await engine.track("a")
            await engine.start()
            await wait_idle(engine)

        assert errors == ["a"]

    @pytest.mark.asyncio
    async def test_poll_errors_are_retried_on_next_tick(self, engine, api, recorder):
        api.set("a", Completed("https://cdn/a.mp4"))
        api.errors["a"] = 2
        await engine.track("a")
        await engine.start()

        await wait_idle(engine)

        assert api.calls["a"] == 3
        assert recorder.completed == ["a"]


class TestBatches:
    """Test batch completion reporting."""

    @pytest.mark.asyncio
    async def test_all_complete_fires_once_with_completed_members_in_order(
        self, engine, api, recorder
    ):
        for job_id in ("a", "b", "c"):
            api.set(job_id, Processing())
        await engine.track_batch("batch-1", {"b": 1, "c": 2, "a": 0})
        await engine.start()

        await wait_for(lambda: api.calls["c"] >= 1)
        api.set("b", Completed("https://cdn/b.mp4"))
        api.set("c", Failed("Encoder crashed"))
        await wait_for(lambda: len(recorder.completed) + len(recorder.errors) == 2)
        assert recorder.batches == []

        api.set("a", Completed("https://cdn/a.mp4"))
        await wait_idle(engine)
        await asyncio.sleep(POLL_INTERVAL * 3)

        assert recorder.batches == [["a", "b"]]
        assert recorder.errors == [("c", "Encoder crashed")]

    @pytest.mark.asyncio
    async def test_batch_with_no_completed_members_still_reports(self, engine, api, recorder):
        api.set("a", Failed())
        api.set("b", Failed())
        await engine.track_batch("batch-1", {"a": 0, "b": 1})
        await engine.start()

        await wait_idle(engine)

        assert recorder.batches == [[]]

    @pytest.mark.asyncio
    async def test_local_batch_index_survives_merge(self, engine, api):
        api.set("a", Processing(), progress=50)
        await engine.track_batch("batch-1", {"a": 3})
        await engine.start()

        await wait_for(lambda: api.calls["a"] >= 1)
        await asyncio.sleep(POLL_INTERVAL)
        job = (await engine.snapshot()).get("a")

        assert job.batch_id == "batch-1"
        assert job.batch_index == 3
        assert job.progress == 50


class TestCancel:
    """Test cancellation with polls in flight."""

    @pytest.mark.asyncio
    async def test_late_response_after_cancel_fires_nothing(self, engine, api, recorder):
        api.set("a", Processing())
        api.gates["a"] = asyncio.Event()
        await engine.track("a")
        await engine.start()
        await wait_for(lambda: api.calls["a"] == 1)

        api.set("a", Completed("https://cdn/a.mp4"))
        await engine.cancel()
        api.gates["a"].set()
        await asyncio.sleep(POLL_INTERVAL * 5)

        snapshot = await engine.snapshot()
        assert recorder.completed == []
        assert snapshot.polling is False
        assert snapshot.get("a").status == JobStatus.COMPLETED
        assert api.calls["a"] == 1

    @pytest.mark.asyncio
    async def test_cancel_forgets_batches(self, engine, api, recorder):
        api.set("a", Processing())
        await engine.track_batch("batch-1", {"a": 0})
        await engine.start()
        await engine.cancel()

        await engine.track("b")
        api.set("b", Completed("https://cdn/b.mp4"))
        await engine.start()
        await wait_idle(engine)

        assert recorder.batches == []

    @pytest.mark.asyncio
    async def test_in_flight_poll_is_not_duplicated(self, engine, api):
        api.set("a", Processing())
        api.gates["a"] = asyncio.Event()
        await engine.track("a")
        await engine.start()
        await engine.start()

        await asyncio.sleep(POLL_INTERVAL * 5)

        assert api.calls["a"] == 1
        assert (await engine.snapshot()).polling is True
        api.gates["a"].set()


class TestAutoDownload:
    """Test automatic result downloads."""

    @pytest.mark.asyncio
    async def test_each_completed_render_is_downloaded_once(self, api, settings):
        downloads = []

        async def downloader(url, filename):
            downloads.append((url, filename))

        api.set("a", Completed("https://cdn/a.mp4"))
        api.set("b", Completed("https://cdn/b.mp4"))
        async with PollingEngine(
            api.get_render,
            poll_interval=POLL_INTERVAL,
            auto_download=True,
            downloader=downloader,
            settings=settings,
        ) as engine:
            await engine.track_batch("batch-1", {"a": 0, "b": 1})
            await engine.start()
            await wait_idle(engine)
            await engine.track("a")
            await engine.start()
            await wait_for(lambda: len(downloads) == 2)
            await asyncio.sleep(POLL_INTERVAL * 3)

        assert sorted(downloads) == [
            ("https://cdn/a.mp4", "render_1.mp4"),
            ("https://cdn/b.mp4", "render_2.mp4"),
        ]

    def test_auto_download_requires_a_downloader(self, api, settings):
        with pytest.raises(ValueError):
            PollingEngine(api.get_render, auto_download=True, settings=settings)


class TestEngineSnapshot:
    """Test derived snapshot values."""

    def test_overall_progress_is_rounded_mean(self):
        snapshot = EngineSnapshot(
            jobs=(
                TrackedJob(id="a", state=Processing(), progress=10),
                TrackedJob(id="b", state=Processing(), progress=25),
            )
        )

        assert snapshot.overall_progress == 18

    def test_overall_progress_rounds_halves_up(self):
        snapshot = EngineSnapshot(
            jobs=(
                TrackedJob(id="a", state=Processing(), progress=50),
                TrackedJob(id="b", state=Processing(), progress=75),
            )
        )

        assert snapshot.overall_progress == 63

    def test_empty_snapshot_has_zero_progress(self):
        assert EngineSnapshot().overall_progress == 0

    def test_partitions_jobs_by_status(self):
        snapshot = EngineSnapshot(
            jobs=(
                TrackedJob(id="a", state=Queued()),
                TrackedJob(id="b", state=Completed("https://cdn/b.mp4")),
                TrackedJob(id="c", state=Failed()),
            )
        )

        assert [job.id for job in snapshot.active_jobs] == ["a"]
        assert [job.id for job in snapshot.completed_jobs] == ["b"]
        assert [job.id for job in snapshot.failed_jobs] == ["c"]

    def test_from_payload(self):
        job = TrackedJob.from_payload(
            {
                "id": "a",
                "status": "completed",
                "progress": 100,
                "downloadUrl": "https://cdn/a.mp4",
                "batchIndex": 2,
            }
        )

        assert job.status == JobStatus.COMPLETED
        assert job.download_url == "https://cdn/a.mp4"
        assert job.batch_index == 2
