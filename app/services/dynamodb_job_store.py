"""
DynamoDB job store shared by the API and the render workers.

One item per job, keyed by ``id``. Writes are conditional on the row's
``updated_at`` so a status change never overwrites a concurrent update it did
not see; a lost race re-reads the row and applies the change again.

Table layout::

    id (S, partition key)
    account_id (S), created_at (S)      # global secondary index, newest first
    status, progress, input_data (JSON), batch_id, batch_index,
    updated_at, completed_at, download_url, thumbnail_url,
    file_size_bytes, error_message

Timestamps are stored as fixed-width UTC ISO strings so they sort by time.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings, get_settings
from app.errors import InvalidRequestError, JobNotFoundError, TransientUpstreamError
from app.services.render_jobs import (
    Failed,
    JobState,
    JobStatus,
    RenderJob,
    state_from_fields,
    utcnow,
)

logger = logging.getLogger(__name__)

_CONDITION_FAILED = "ConditionalCheckFailedException"
_MAX_WRITE_ATTEMPTS = 5


class _StaleRow(Exception):
    """The row changed between read and conditional write."""


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def job_to_item(job: RenderJob) -> dict[str, dict[str, str]]:
    """Serialize a job to a DynamoDB item in attribute-value form."""
    item = {
        "id": {"S": job.id},
        "account_id": {"S": job.account_id},
        "status": {"S": job.status.value},
        "progress": {"N": str(job.progress)},
        "input_data": {"S": json.dumps(job.input_data)},
        "created_at": {"S": format_timestamp(job.created_at)},
        "updated_at": {"S": format_timestamp(job.updated_at)},
    }
    optional = {
        "batch_id": job.batch_id,
        "batch_index": job.batch_index,
        "completed_at": format_timestamp(job.completed_at) if job.completed_at else None,
        "download_url": job.download_url,
        "thumbnail_url": job.thumbnail_url,
        "file_size_bytes": job.file_size_bytes,
        "error_message": job.error_message,
    }
    for key, value in optional.items():
        if value is None:
            continue
        item[key] = {"N": str(value)} if isinstance(value, int) else {"S": value}
    return item


def item_to_job(item: dict[str, dict[str, str]]) -> RenderJob:
    """Rebuild a job from a DynamoDB item. Rows written by workers use the same layout."""

    def text(key: str) -> Optional[str]:
        return item[key]["S"] if key in item else None

    def number(key: str) -> Optional[int]:
        return int(item[key]["N"]) if key in item else None

    def timestamp(key: str) -> Optional[datetime]:
        value = text(key)
        return datetime.fromisoformat(value) if value else None

    state = state_from_fields(
        text("status"),
        download_url=text("download_url"),
        thumbnail_url=text("thumbnail_url"),
        error_message=text("error_message"),
        file_size_bytes=number("file_size_bytes"),
    )
    return RenderJob(
        id=text("id"),
        account_id=text("account_id"),
        state=state,
        progress=number("progress") or 0,
        input_data=json.loads(text("input_data") or "{}"),
        batch_id=text("batch_id"),
        batch_index=number("batch_index"),
        created_at=timestamp("created_at"),
        updated_at=timestamp("updated_at"),
        completed_at=timestamp("completed_at"),
    )


class DynamoDBJobStore:
    """
    Job store over a DynamoDB table.

    All boto3 calls are blocking, so they run in the default thread pool.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[Any] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.table = self.settings.render_jobs_table
        self.account_index = self.settings.render_jobs_account_index
        self._client = client
        self._clock = clock

    @property
    def client(self):
        """Lazy-initialize DynamoDB client."""
        if self._client is None:
            client_kwargs = {"region_name": self.settings.aws_region}
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                client_kwargs["aws_access_key_id"] = self.settings.aws_access_key_id
                client_kwargs["aws_secret_access_key"] = self.settings.aws_secret_access_key

            self._client = boto3.client("dynamodb", **client_kwargs)
            logger.info(f"DynamoDB client initialized for table: {self.table}")

        return self._client

    async def _run(self, operation: str, call: Callable[[], Any]) -> Any:
        """Run a blocking boto3 call in the thread pool and map its failures."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, call)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == _CONDITION_FAILED:
                raise _StaleRow() from e
            logger.error(f"DynamoDB {operation} failed: {e}")
            raise TransientUpstreamError(f"Job store {operation} failed: {code or e}") from e
        except BotoCoreError as e:
            logger.error(f"DynamoDB {operation} failed: {e}")
            raise TransientUpstreamError(f"Job store {operation} failed: {e}") from e

    async def create(self, job: RenderJob) -> str:
        item = job_to_item(job)
        try:
            await self._run(
                "create",
                lambda: self.client.put_item(
                    TableName=self.table,
                    Item=item,
                    ConditionExpression="attribute_not_exists(id)",
                ),
            )
        except _StaleRow:
            raise InvalidRequestError(f"Render job {job.id} already exists", reason="duplicate_job")
        logger.info(f"Created render job {job.id} for {job.account_id}")
        return job.id

    async def get(self, job_id: str) -> Optional[RenderJob]:
        response = await self._run(
            "get",
            lambda: self.client.get_item(
                TableName=self.table,
                Key={"id": {"S": job_id}},
                ConsistentRead=True,
            ),
        )
        item = response.get("Item")
        return item_to_job(item) if item else None

    async def _replace(
        self, job_id: str, change: Callable[[RenderJob], Optional[RenderJob]]
    ) -> tuple[Optional[RenderJob], Optional[RenderJob]]:
        """
        Apply ``change`` to the current row and write it back conditionally.

        Returns:
            (previous, updated); previous is None when the row does not exist,
            updated is None when ``change`` declined to update
        """
        for _ in range(_MAX_WRITE_ATTEMPTS):
            job = await self.get(job_id)
            if job is None:
                return None, None
            updated = change(job)
            if updated is None:
                return job, None

            item = job_to_item(updated)
            expected = format_timestamp(job.updated_at)
            try:
                await self._run(
                    "update",
                    lambda: self.client.put_item(
                        TableName=self.table,
                        Item=item,
                        ConditionExpression="updated_at = :expected",
                        ExpressionAttributeValues={":expected": {"S": expected}},
                    ),
                )
            except _StaleRow:
                logger.debug(f"Render job {job_id} changed concurrently, retrying")
                continue
            return job, updated

        raise TransientUpstreamError(f"Render job {job_id} is being updated concurrently")

    async def update_status(
        self,
        job_id: str,
        state: Optional[JobState] = None,
        progress: Optional[int] = None,
    ) -> RenderJob:
        previous, updated = await self._replace(
            job_id, lambda job: job.apply(state=state, progress=progress, now=self._clock())
        )
        if previous is None:
            raise JobNotFoundError(f"Render job {job_id} not found")
        if updated.status != previous.status:
            logger.info(f"Render job {job_id}: {previous.status.value} -> {updated.status.value}")
        return updated

    async def _scan(self, **params) -> list[dict]:
        items = []
        while True:
            response = await self._run("scan", lambda: self.client.scan(**params))
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                return items
            params["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    async def list_by_status_before(
        self, statuses: Iterable[JobStatus], cutoff: datetime
    ) -> list[RenderJob]:
        wanted = sorted(JobStatus(status).value for status in statuses)
        if not wanted:
            return []
        placeholders = [f":s{i}" for i in range(len(wanted))]
        values = {key: {"S": status} for key, status in zip(placeholders, wanted)}
        values[":cutoff"] = {"S": format_timestamp(cutoff)}

        items = await self._scan(
            TableName=self.table,
            FilterExpression=f"#status IN ({', '.join(placeholders)}) AND created_at < :cutoff",
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues=values,
            ConsistentRead=True,
        )
        return [item_to_job(item) for item in items]

    async def bulk_mark_failed(self, job_ids: Iterable[str], message: str) -> list[str]:
        def fail(job: RenderJob) -> Optional[RenderJob]:
            if job.is_terminal:
                return None
            return job.apply(state=Failed(message), now=self._clock())

        failed = []
        for job_id in job_ids:
            _, updated = await self._replace(job_id, fail)
            if updated is not None:
                failed.append(job_id)
        return failed

    async def list_for_account(
        self, account_id: str, statuses: Optional[Iterable[JobStatus]] = None
    ) -> list[RenderJob]:
        wanted = set(statuses) if statuses else None
        params = {
            "TableName": self.table,
            "IndexName": self.account_index,
            "KeyConditionExpression": "account_id = :account",
            "ExpressionAttributeValues": {":account": {"S": account_id}},
            "ScanIndexForward": False,
        }

        jobs = []
        while True:
            response = await self._run("query", lambda: self.client.query(**params))
            for item in response.get("Items", []):
                job = item_to_job(item)
                if wanted is None or job.status in wanted:
                    jobs.append(job)
            if "LastEvaluatedKey" not in response:
                break
            params["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        return sorted(jobs, key=lambda job: job.created_at, reverse=True)
