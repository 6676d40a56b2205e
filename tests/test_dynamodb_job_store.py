"""
Tests for the DynamoDB job store against an in-memory DynamoDB client.
"""

from datetime import timedelta

import pytest
from botocore.exceptions import ClientError

from app.errors import (
    InvalidRequestError,
    InvalidTransitionError,
    JobNotFoundError,
    TransientUpstreamError,
)
from app.services.dynamodb_job_store import DynamoDBJobStore, job_to_item
from app.services.job_store import InMemoryJobStore, build_job_store
from app.services.render_jobs import (
    ACTIVE_STATUSES,
    Completed,
    Failed,
    JobStatus,
    Processing,
    RenderJob,
)


def client_error(code, operation="PutItem"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeDynamoDB:
    """Single-table DynamoDB client honouring the conditions the store sends."""

    def __init__(self, page_size=2):
        self.items: dict[str, dict] = {}
        self.page_size = page_size
        self.conflicts = 0  # conditional updates to reject as if another writer won
        self.failure = None

    def _page(self, items, start_key):
        offset = int(start_key["offset"]["N"]) if start_key else 0
        page = items[offset:offset + self.page_size]
        response = {"Items": page}
        if offset + self.page_size < len(items):
            response["LastEvaluatedKey"] = {"offset": {"N": str(offset + self.page_size)}}
        return response

    def put_item(self, TableName, Item, ConditionExpression=None, ExpressionAttributeValues=None):
        if self.failure:
            raise self.failure
        key = Item["id"]["S"]
        current = self.items.get(key)
        if ConditionExpression == "attribute_not_exists(id)" and current is not None:
            raise client_error("ConditionalCheckFailedException")
        if ConditionExpression == "updated_at = :expected":
            if self.conflicts:
                self.conflicts -= 1
                raise client_error("ConditionalCheckFailedException")
            if current is None or current["updated_at"] != ExpressionAttributeValues[":expected"]:
                raise client_error("ConditionalCheckFailedException")
        self.items[key] = Item
        return {}

    def get_item(self, TableName, Key, ConsistentRead=False):
        if self.failure:
            raise self.failure
        item = self.items.get(Key["id"]["S"])
        return {"Item": item} if item else {}

    def scan(self, TableName, FilterExpression, ExpressionAttributeNames,
             ExpressionAttributeValues, ConsistentRead=False, ExclusiveStartKey=None):
        statuses = {
            value["S"] for key, value in ExpressionAttributeValues.items() if key.startswith(":s")
        }
        cutoff = ExpressionAttributeValues[":cutoff"]["S"]
        matching = [
            item
            for item in self.items.values()
            if item["status"]["S"] in statuses and item["created_at"]["S"] < cutoff
        ]
        return self._page(matching, ExclusiveStartKey)

    def query(self, TableName, IndexName, KeyConditionExpression, ExpressionAttributeValues,
              ScanIndexForward=True, ExclusiveStartKey=None):
        account_id = ExpressionAttributeValues[":account"]["S"]
        matching = sorted(
            (item for item in self.items.values() if item["account_id"]["S"] == account_id),
            key=lambda item: item["created_at"]["S"],
            reverse=not ScanIndexForward,
        )
        return self._page(matching, ExclusiveStartKey)


def make_job(job_id, clock, minutes_old=0, account_id="user-1", **kwargs):
    created_at = clock() - timedelta(minutes=minutes_old)
    return RenderJob(
        id=job_id,
        account_id=account_id,
        created_at=created_at,
        updated_at=created_at,
        **kwargs,
    )


@pytest.fixture
def dynamodb():
    return FakeDynamoDB()


@pytest.fixture
def store(dynamodb, settings, clock):
    return DynamoDBJobStore(settings=settings, client=dynamodb, clock=clock)


class TestDynamoDBJobStore:
    """Test rows, conditional writes and queries."""

    @pytest.mark.asyncio
    async def test_stores_every_field(self, store, clock):
        job = make_job(
            "job-1",
            clock,
            state=Completed("user-1/job-1.mp4", "user-1/job-1_thumb.jpg", 2048),
            progress=100,
            input_data={"totalDuration": 12.5, "mediaFiles": [{"url": "user-1/a.mp4"}]},
            batch_id="batch-1",
            batch_index=3,
            completed_at=clock(),
        )

        await store.create(job)

        assert await store.get("job-1") == job

    @pytest.mark.asyncio
    async def test_duplicate_create_is_rejected(self, store, clock):
        await store.create(make_job("job-1", clock))

        with pytest.raises(InvalidRequestError) as exc_info:
            await store.create(make_job("job-1", clock))

        assert exc_info.value.reason == "duplicate_job"

    @pytest.mark.asyncio
    async def test_unknown_job(self, store):
        assert await store.get("missing") is None
        with pytest.raises(JobNotFoundError):
            await store.update_status("missing", state=Processing())

    @pytest.mark.asyncio
    async def test_worker_updates_are_visible_to_the_api(self, dynamodb, settings, clock):
        api = DynamoDBJobStore(settings=settings, client=dynamodb, clock=clock)
        worker = DynamoDBJobStore(settings=settings, client=dynamodb, clock=clock)
        await api.create(make_job("job-1", clock))

        await worker.update_status("job-1", state=Processing(), progress=40)
        await worker.update_status("job-1", state=Completed("user-1/job-1.mp4"))

        job = await api.get("job-1")
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.download_url == "user-1/job-1.mp4"

    @pytest.mark.asyncio
    async def test_rows_written_by_workers_are_read(self, store, dynamodb, clock):
        dynamodb.items["job-1"] = job_to_item(
            make_job("job-1", clock, state=Failed("Encoder crashed"))
        )

        job = await store.get("job-1")

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Encoder crashed"

    @pytest.mark.asyncio
    async def test_concurrent_write_is_retried(self, store, dynamodb, clock):
        await store.create(make_job("job-1", clock))
        dynamodb.conflicts = 2

        job = await store.update_status("job-1", progress=30)

        assert job.progress == 30
        assert (await store.get("job-1")).progress == 30

    @pytest.mark.asyncio
    async def test_persistent_contention_is_transient(self, store, dynamodb, clock):
        await store.create(make_job("job-1", clock))
        dynamodb.conflicts = 100

        with pytest.raises(TransientUpstreamError):
            await store.update_status("job-1", progress=30)

    @pytest.mark.asyncio
    async def test_terminal_job_is_not_rewritten(self, store, clock):
        await store.create(make_job("job-1", clock, state=Completed("user-1/job-1.mp4")))

        with pytest.raises(InvalidTransitionError):
            await store.update_status("job-1", state=Processing())

        assert (await store.get("job-1")).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_lists_stale_active_jobs_across_pages(self, store, clock):
        for i in range(5):
            await store.create(make_job(f"old-{i}", clock, minutes_old=40, state=Processing()))
        await store.create(make_job("recent", clock, minutes_old=5))
        await store.create(make_job("done", clock, minutes_old=40, state=Completed("u/d.mp4")))

        jobs = await store.list_by_status_before(ACTIVE_STATUSES, clock() - timedelta(minutes=30))

        assert sorted(job.id for job in jobs) == [f"old-{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_bulk_mark_failed_returns_changed_ids(self, store, clock):
        await store.create(make_job("a", clock))
        await store.create(make_job("b", clock, state=Completed("user-1/b.mp4")))

        failed = await store.bulk_mark_failed(["a", "b", "missing"], "Timed out")

        assert failed == ["a"]
        assert (await store.get("a")).error_message == "Timed out"
        assert (await store.get("b")).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_list_for_account_newest_first(self, store, clock):
        for minutes, job_id in [(30, "oldest"), (10, "newest"), (20, "middle")]:
            await store.create(make_job(job_id, clock, minutes_old=minutes))
        await store.create(make_job("foreign", clock, account_id="user-2"))
        await store.update_status("middle", state=Failed("boom"))

        jobs = await store.list_for_account("user-1")
        failed = await store.list_for_account("user-1", [JobStatus.FAILED])

        assert [job.id for job in jobs] == ["newest", "middle", "oldest"]
        assert [job.id for job in failed] == ["middle"]

    @pytest.mark.asyncio
    async def test_service_errors_are_transient(self, store, dynamodb):
        dynamodb.failure = client_error("ProvisionedThroughputExceededException", "GetItem")

        with pytest.raises(TransientUpstreamError):
            await store.get("job-1")


class TestBuildJobStore:
    def test_memory_backend(self, settings):
        assert isinstance(build_job_store(settings), InMemoryJobStore)

    def test_dynamodb_backend(self, settings):
        settings.job_store_backend = "dynamodb"

        store = build_job_store(settings)

        assert isinstance(store, DynamoDBJobStore)
        assert store.table == "render-jobs"
