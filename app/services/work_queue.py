"""
Work queue for the external render workers.

Each message is ``{"jobId": ..., "userId": ...}``. Delivery is at-least-once;
workers must tolerate duplicates.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings, get_settings
from app.errors import TransientUpstreamError

logger = logging.getLogger(__name__)


def render_message(job_id: str, account_id: str) -> dict[str, str]:
    return {"jobId": job_id, "userId": account_id}


class WorkQueue(Protocol):
    async def enqueue(self, message: dict[str, Any]) -> None:
        """Raises TransientUpstreamError when the message cannot be sent."""
        ...


class SQSWorkQueue:
    """Sends render messages to an SQS queue."""

    def __init__(
        self,
        queue_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        client: Optional[Any] = None,
    ):
        self.settings = settings or get_settings()
        self.queue_url = queue_url or self.settings.render_queue_url
        if not self.queue_url:
            raise ValueError("RENDER_QUEUE_URL is required for the SQS work queue")
        self._client = client

    @property
    def client(self):
        """Lazy-initialize SQS client."""
        if self._client is None:
            client_kwargs = {"region_name": self.settings.aws_region}
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                client_kwargs["aws_access_key_id"] = self.settings.aws_access_key_id
                client_kwargs["aws_secret_access_key"] = self.settings.aws_secret_access_key
            self._client = boto3.client("sqs", **client_kwargs)
        return self._client

    async def enqueue(self, message: dict[str, Any]) -> None:
        body = json.dumps(message)
        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self.client.send_message(QueueUrl=self.queue_url, MessageBody=body),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send render message {body}: {e}")
            raise TransientUpstreamError(f"Failed to queue render job: {e}") from e

        logger.info(f"Queued render message {response.get('MessageId')}: {body}")


class InMemoryWorkQueue:
    """Collects messages in-process. Used for local runs and tests."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []

    async def enqueue(self, message: dict[str, Any]) -> None:
        self.messages.append(dict(message))
        logger.info(f"Queued render message: {message}")

    def drain(self) -> list[dict[str, Any]]:
        messages, self.messages = self.messages, []
        return messages


def build_work_queue(settings: Optional[Settings] = None) -> WorkQueue:
    """Create the work queue selected by QUEUE_BACKEND."""
    settings = settings or get_settings()
    if settings.queue_backend == "memory":
        return InMemoryWorkQueue()
    return SQSWorkQueue(settings=settings)
