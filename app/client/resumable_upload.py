"""
Resumable Upload - chunked media uploads over the tus protocol.

Large files are sent in fixed-size chunks. An interrupted upload resumes from
the offset the server reports, and network failures are retried with a fixed
schedule of delays. Uploads never overwrite an existing object.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, MutableMapping, Optional, Sequence, Union
from urllib.parse import urljoin

import httpx

from app.config import Settings, get_settings
from app.errors import (
    AuthError,
    InvalidRequestError,
    ObjectExistsError,
    RenderServiceError,
    TransientUpstreamError,
)
from app.services.object_storage import StorageArea

logger = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"
DEFAULT_BATCH_SIZE = 10


@dataclass
class UploadProgress:
    bytes_uploaded: int
    bytes_total: int

    @property
    def percent(self) -> float:
        if self.bytes_total == 0:
            return 100.0
        return round(self.bytes_uploaded / self.bytes_total * 100, 2)


@dataclass
class UploadItem:
    """One file for ``upload_many``."""

    source: Union[str, Path]
    object_name: str
    content_type: str


def encode_metadata(metadata: dict[str, str]) -> str:
    """Encode the Upload-Metadata header: ``key base64(value)`` pairs."""
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
        for key, value in metadata.items()
    )


class ResumableUploader:
    """
    Client for a tus resumable upload endpoint.

    Upload URLs are remembered per file fingerprint until the upload
    finishes, so calling ``upload`` again after a failure resumes it.
    """

    def __init__(
        self,
        endpoint: str,
        access_token: str,
        *,
        chunk_size: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
        client: Optional[httpx.AsyncClient] = None,
        resume_store: Optional[MutableMapping[str, str]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the uploader.

        Args:
            endpoint: tus creation endpoint
            access_token: Bearer token of the uploading user
            chunk_size: Bytes per PATCH request (defaults to 6 MiB)
            retry_delays: Seconds to wait before each retry (defaults to 0, 3, 5, 10, 20)
            client: httpx client to use
            resume_store: Mapping of fingerprint to upload URL
            sleep: Coroutine used to wait between retries
        """
        self.settings = settings or get_settings()
        self.endpoint = endpoint
        self.chunk_size = chunk_size or self.settings.upload_chunk_size_bytes
        self.retry_delays = list(
            self.settings.upload_retry_delays_seconds if retry_delays is None else retry_delays
        )
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=60.0)
        self._resume_store = resume_store if resume_store is not None else {}
        self._sleep = sleep

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "Tus-Resumable": TUS_VERSION,
            "Authorization": f"Bearer {self._access_token}",
            "x-upsert": "false",
            **extra,
        }

    async def upload(
        self,
        source: Union[str, Path],
        object_name: str,
        content_type: str,
        area: StorageArea = StorageArea.MEDIA_LIBRARY,
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ) -> str:
        """
        Upload a file, resuming a previous attempt when possible.

        Args:
            source: Local file to upload
            object_name: Destination object path inside the storage area
            content_type: MIME type stored with the object
            area: Destination storage area
            on_progress: Called after every chunk

        Returns:
            The upload URL of the finished upload

        Raises:
            ObjectExistsError: If the destination object already exists
            TransientUpstreamError: If retries are exhausted
        """
        source = Path(source)
        total = source.stat().st_size
        fingerprint = f"{StorageArea(area).value}:{object_name}:{total}"

        upload_url = self._resume_store.get(fingerprint)
        offset = None
        if upload_url:
            offset = await self._server_offset(upload_url)
            if offset is None:
                logger.info(f"Previous upload of {object_name} expired, starting over")
                del self._resume_store[fingerprint]
            else:
                logger.info(f"Resuming upload of {object_name} at {offset}/{total} bytes")

        if offset is None:
            upload_url = await self._create(total, object_name, content_type, area)
            self._resume_store[fingerprint] = upload_url
            offset = 0

        with source.open("rb") as f:
            while offset < total:
                f.seek(offset)
                chunk = f.read(self.chunk_size)
                offset = await self._send_chunk(upload_url, offset, chunk)
                if on_progress:
                    on_progress(UploadProgress(bytes_uploaded=offset, bytes_total=total))

        self._resume_store.pop(fingerprint, None)
        logger.info(f"Upload complete: {object_name} ({total / 1024 / 1024:.1f} MB)")
        return upload_url

    async def upload_many(
        self,
        items: Sequence[UploadItem],
        batch_size: int = DEFAULT_BATCH_SIZE,
        area: StorageArea = StorageArea.MEDIA_LIBRARY,
    ) -> list[Union[str, RenderServiceError]]:
        """
        Upload files in concurrent batches of ``batch_size``.

        Returns:
            Upload URL or the error, per item, in input order
        """
        results: list[Union[str, RenderServiceError]] = []
        for start in range(0, len(items), batch_size):
            batch = items[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(
                    self.upload(item.source, item.object_name, item.content_type, area)
                    for item in batch
                ),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, RenderServiceError):
                    logger.warning(f"Upload of {item.object_name} failed: {outcome.message}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)
        return results

    async def _create(
        self, total: int, object_name: str, content_type: str, area: StorageArea
    ) -> str:
        metadata = encode_metadata({
            "bucketName": StorageArea(area).value,
            "objectName": object_name,
            "contentType": content_type,
            "cacheControl": str(self.settings.upload_cache_control_seconds),
        })
        response = await self._request(
            "POST",
            self.endpoint,
            headers=self._headers(**{"Upload-Length": str(total), "Upload-Metadata": metadata}),
        )
        if response.status_code == 409:
            raise ObjectExistsError(f"Object already exists: {object_name}")
        self._raise_for_status(response)

        location = response.headers.get("Location")
        if not location:
            raise TransientUpstreamError("Upload endpoint returned no Location header")
        return urljoin(self.endpoint, location)

    async def _server_offset(self, upload_url: str) -> Optional[int]:
        """Current offset of an existing upload, or None if it no longer exists."""
        response = await self._request("HEAD", upload_url, headers=self._headers())
        if response.status_code in (404, 410):
            return None
        self._raise_for_status(response)
        return int(response.headers["Upload-Offset"])

    async def _send_chunk(self, upload_url: str, offset: int, chunk: bytes) -> int:
        response = await self._request(
            "PATCH",
            upload_url,
            headers=self._headers(**{
                "Upload-Offset": str(offset),
                "Content-Type": "application/offset+octet-stream",
            }),
            content=chunk,
        )
        if response.status_code == 409:
            # Offset mismatch after a partially applied retry
            server_offset = await self._server_offset(upload_url)
            if server_offset is None:
                raise TransientUpstreamError(f"Upload {upload_url} no longer exists")
            return server_offset
        self._raise_for_status(response)
        return int(response.headers["Upload-Offset"])

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying network failures and server errors."""
        last_error = None
        for attempt, delay in enumerate([None, *self.retry_delays]):
            if delay:
                await self._sleep(delay)
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = str(e)
                logger.warning(f"Upload {method} attempt {attempt + 1} failed: {e}")
                continue

            if response.status_code >= 500 or response.status_code == 423:
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"Upload {method} attempt {attempt + 1} failed: HTTP {response.status_code}"
                )
                continue
            return response

        raise TransientUpstreamError(
            f"Upload {method} failed after {len(self.retry_delays) + 1} attempts: {last_error}"
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise AuthError("Upload not authorized")
        if response.status_code >= 400:
            raise InvalidRequestError(
                f"Upload rejected with HTTP {response.status_code}: {response.text}",
                reason="upload_rejected",
            )
