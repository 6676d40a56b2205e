"""
HTTP client for the render API.
"""

import logging
from typing import Any, Optional

import httpx

from app.client.polling_engine import TrackedJob
from app.config import Settings, get_settings
from app.errors import RenderServiceError, TransientUpstreamError
from app.schemas.requests import StartRenderRequest

logger = logging.getLogger(__name__)


class RenderApiError(RenderServiceError):
    """Error response from the render API, carrying the server's reason."""

    def __init__(self, status_code: int, body: dict[str, Any]):
        details = {k: v for k, v in body.items() if k not in ("error", "message")}
        super().__init__(
            body.get("message") or f"Render API returned HTTP {status_code}",
            reason=body.get("error") or "http_error",
            **details,
        )
        self.status_code = status_code


class RenderApiClient:
    """
    Async client for the render endpoints, acting on behalf of one account.
    """

    def __init__(
        self,
        base_url: str,
        account_id: str,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Render service base URL
            account_id: Account the requests are made for
            headers: Extra headers sent with every request
            timeout: Request timeout in seconds (defaults to settings)
            transport: Custom httpx transport
        """
        settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"X-Account-Id": account_id, **(headers or {})},
            timeout=timeout or settings.render_api_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RenderApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransientUpstreamError(f"Render API unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text}
            if response.status_code >= 500:
                logger.warning(f"{method} {path} returned {response.status_code}: {body}")
            raise RenderApiError(response.status_code, body if isinstance(body, dict) else {})

        return response

    async def start_render(self, request: StartRenderRequest) -> str:
        """
        Submit a render.

        Returns:
            The new job id

        Raises:
            RenderApiError: If the service rejects the render
            TransientUpstreamError: If the service cannot be reached
        """
        response = await self._request(
            "POST",
            "/api/render/start",
            json=request.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return response.json()["jobId"]

    async def get_render(self, job_id: str) -> Optional[TrackedJob]:
        """Fetch a job's status. Returns None if the job does not exist."""
        try:
            response = await self._request("GET", f"/api/render/{job_id}")
        except RenderApiError as e:
            if e.status_code == 404:
                return None
            raise
        return TrackedJob.from_payload(response.json())

    async def check_upload(self, file_size: float, mime_type: Optional[str] = None) -> dict[str, Any]:
        """
        Ask whether a file may be uploaded.

        Returns:
            The check result; ``canUpload`` is False for rejected uploads
        """
        try:
            response = await self._request(
                "POST",
                "/api/storage/check-limit",
                json={"fileSize": file_size, "mimeType": mime_type},
            )
        except RenderApiError as e:
            if e.status_code == 400:
                return {"canUpload": False, "error": e.reason, "message": e.message, **e.details}
            raise
        return response.json()
