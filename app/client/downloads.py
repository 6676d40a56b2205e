"""
Result downloader used for auto-downloading completed renders.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import httpx

from app.errors import TransientUpstreamError

logger = logging.getLogger(__name__)


class ResultDownloader:
    """
    Streams render results into a local directory.

    Existing files are never overwritten; a numeric suffix is added instead.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._client = client or httpx.AsyncClient(timeout=None, follow_redirects=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _target_path(self, filename: str) -> Path:
        target = self.directory / filename
        counter = 1
        while target.exists():
            target = self.directory / f"{Path(filename).stem} ({counter}){Path(filename).suffix}"
            counter += 1
        return target

    async def __call__(self, url: str, filename: str) -> Path:
        """
        Download ``url`` into the directory as ``filename``.

        Returns:
            Path of the written file

        Raises:
            TransientUpstreamError: If the download fails
        """
        target = self._target_path(filename)
        logger.info(f"Downloading render to {target}")

        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                with open(target, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            if target.exists():
                target.unlink()
            raise TransientUpstreamError(f"Failed to download render: {e}") from e

        logger.info(f"Downloaded {target.stat().st_size / 1024 / 1024:.2f} MB to {target}")
        return target
