"""
S3 object storage backend.

Each storage area lives in its own bucket. Folders are key prefixes, listed
one level at a time with a "/" delimiter.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings, get_settings
from app.errors import ObjectNotFoundError, TransientUpstreamError
from app.services.object_storage import ListingPage, StorageArea, StorageEntry

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStorage:
    """
    Service for interacting with the S3 buckets backing each storage area.

    All boto3 calls are blocking, so they run in the default thread pool.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize S3 storage.

        Args:
            settings: Settings to use (defaults to the cached settings)
            client: Preconfigured boto3 S3 client (created lazily if not provided)
        """
        self.settings = settings or get_settings()
        self._client = client
        self._buckets = {
            StorageArea.MEDIA_LIBRARY: self.settings.media_library_bucket,
            StorageArea.RENDERS: self.settings.renders_bucket,
        }

    @property
    def client(self):
        """Lazy-initialize S3 client."""
        if self._client is None:
            client_kwargs = {"region_name": self.settings.aws_region}
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                client_kwargs["aws_access_key_id"] = self.settings.aws_access_key_id
                client_kwargs["aws_secret_access_key"] = self.settings.aws_secret_access_key

            self._client = boto3.client("s3", **client_kwargs)
            logger.info(f"S3 client initialized for region: {self.settings.aws_region}")

        return self._client

    def bucket_for(self, area: StorageArea) -> str:
        return self._buckets[StorageArea(area)]

    async def _run(self, operation: str, call: Callable[[], Any]) -> Any:
        """Run a blocking boto3 call in the thread pool and map its failures."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, call)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"S3 {operation}: object not found") from e
            logger.error(f"S3 {operation} failed: {e}")
            raise TransientUpstreamError(f"S3 {operation} failed: {code or e}") from e
        except BotoCoreError as e:
            logger.error(f"S3 {operation} failed: {e}")
            raise TransientUpstreamError(f"S3 {operation} failed: {e}") from e

    async def list_page(
        self,
        area: StorageArea,
        folder: str,
        limit: int,
        cursor: Optional[str] = None,
    ) -> ListingPage:
        """
        List the immediate children of a folder.

        Args:
            area: Storage area to list
            folder: Folder path without leading or trailing slash
            limit: Maximum entries per page
            cursor: Continuation token from the previous page

        Returns:
            ListingPage with folders (common prefixes) and files

        Raises:
            TransientUpstreamError: If S3 is unreachable or rejects the request
        """
        folder = folder.strip("/")
        prefix = f"{folder}/" if folder else ""
        params = {
            "Bucket": self.bucket_for(area),
            "Prefix": prefix,
            "Delimiter": "/",
            "MaxKeys": limit,
        }
        if cursor:
            params["ContinuationToken"] = cursor

        response = await self._run("list", lambda: self.client.list_objects_v2(**params))

        entries = []
        for common_prefix in response.get("CommonPrefixes", []):
            name = common_prefix["Prefix"][len(prefix):].rstrip("/")
            entries.append(StorageEntry(name=name, is_folder=True))

        for obj in response.get("Contents", []):
            name = obj["Key"][len(prefix):]
            if not name:
                continue  # Folder marker object
            entries.append(StorageEntry(name=name, size=obj.get("Size")))

        next_cursor = None
        if response.get("IsTruncated"):
            next_cursor = response.get("NextContinuationToken")

        return ListingPage(entries=entries, next_cursor=next_cursor)

    async def move(self, area: StorageArea, source: str, destination: str) -> None:
        """
        Move an object by copying it and deleting the source.

        Raises:
            ObjectNotFoundError: If the source object does not exist
            TransientUpstreamError: On any other S3 failure
        """
        bucket = self.bucket_for(area)
        logger.info(f"Moving s3://{bucket}/{source} to {destination}")

        await self._run(
            "copy",
            lambda: self.client.copy_object(
                Bucket=bucket,
                Key=destination,
                CopySource={"Bucket": bucket, "Key": source},
            ),
        )
        await self._run(
            "delete",
            lambda: self.client.delete_object(Bucket=bucket, Key=source),
        )

    async def write(self, area: StorageArea, path: str, data: bytes) -> None:
        bucket = self.bucket_for(area)
        await self._run(
            "put", lambda: self.client.put_object(Bucket=bucket, Key=path, Body=data)
        )
        logger.info(f"Stored s3://{bucket}/{path} ({len(data)} bytes)")

    async def read(self, area: StorageArea, path: str) -> bytes:
        bucket = self.bucket_for(area)
        response = await self._run(
            "get", lambda: self.client.get_object(Bucket=bucket, Key=path)
        )
        body = response["Body"]
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, body.read)
        except BotoCoreError as e:
            logger.error(f"S3 read of {path} failed: {e}")
            raise TransientUpstreamError(f"S3 get failed: {e}") from e
        finally:
            body.close()

    async def signed_download_url(
        self, area: StorageArea, path: str, expires_in: int
    ) -> Optional[str]:
        """
        Generate a presigned GET URL for an existing object.

        Returns:
            The URL, or None if the object does not exist
        """
        bucket = self.bucket_for(area)
        try:
            await self._run("head", lambda: self.client.head_object(Bucket=bucket, Key=path))
        except ObjectNotFoundError:
            return None

        return await self._run(
            "presign",
            lambda: self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=expires_in,
            ),
        )

    async def signed_upload_url(self, area: StorageArea, path: str, expires_in: int) -> str:
        bucket = self.bucket_for(area)
        return await self._run(
            "presign",
            lambda: self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=expires_in,
            ),
        )
