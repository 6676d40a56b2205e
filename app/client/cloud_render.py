"""
Cloud render session - submit renders and follow them to completion.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from app.client.api_client import RenderApiClient
from app.client.downloads import ResultDownloader
from app.client.polling_engine import EngineSnapshot, PollingEngine, TrackedJob
from app.config import Settings
from app.schemas.requests import StartRenderRequest
from app.services.batch_submission import BatchSubmission, submit_batch

logger = logging.getLogger(__name__)


class CloudRenderSession:
    """
    Client-side render orchestration for one account.

    Submitted renders are tracked by a PollingEngine until they finish;
    completed renders can be downloaded automatically.

    Example:
        async with CloudRenderSession(api, on_complete=print) as session:
            await session.start_batch_render(requests)
            await session.wait_until_idle()
    """

    def __init__(
        self,
        api: RenderApiClient,
        *,
        on_complete: Optional[Callable[[TrackedJob], Any]] = None,
        on_error: Optional[Callable[[str, str], Any]] = None,
        on_all_complete: Optional[Callable[[list[TrackedJob]], Any]] = None,
        auto_download: bool = False,
        download_dir: Union[str, Path, None] = None,
        downloader: Optional[ResultDownloader] = None,
        poll_interval: Optional[float] = None,
        settings: Optional[Settings] = None,
    ):
        self.api = api
        self.downloader = None
        if auto_download:
            self.downloader = downloader or ResultDownloader(download_dir or ".")
        self.engine = PollingEngine(
            api.get_render,
            poll_interval=poll_interval,
            on_complete=on_complete,
            on_error=on_error,
            on_all_complete=on_all_complete,
            auto_download=auto_download,
            downloader=self.downloader,
            settings=settings,
        )

    async def start_render(self, request: StartRenderRequest) -> str:
        """
        Submit one render and start tracking it.

        Returns:
            The new job id

        Raises:
            RenderApiError: If the service rejects the render
        """
        job_id = await self.api.start_render(request)
        await self.engine.track(job_id, batch_index=request.batch_index)
        await self.engine.start()
        logger.info(f"Render {job_id} started")
        return job_id

    async def start_batch_render(self, requests: Sequence[StartRenderRequest]) -> BatchSubmission:
        """
        Submit renders concurrently as one batch and track the ones that started.

        Raises:
            AllSubmissionsFailedError: If no render could be started
        """
        submission = await submit_batch(requests, self.api.start_render)
        await self.engine.track_batch(submission.batch_id, submission.indexes)
        await self.engine.start()
        return submission

    async def cancel(self) -> None:
        await self.engine.cancel()

    async def snapshot(self) -> EngineSnapshot:
        return await self.engine.snapshot()

    async def wait_until_idle(self) -> None:
        await self.engine.wait_until_idle()

    async def aclose(self) -> None:
        await self.engine.aclose()
        if self.downloader is not None:
            await self.downloader.aclose()

    async def __aenter__(self) -> "CloudRenderSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
