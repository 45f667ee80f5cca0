"""S3-compatible storage backend (AWS S3, RustFS, MinIO)."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from audiohub.storage.base import StorageBackend, guess_content_type
from audiohub.storage.exceptions import ObjectNotFoundError, StorageError

logger = logging.getLogger(__name__)

_BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3StorageBackend(StorageBackend):
    """S3 API backend using boto3.

    Path-style addressing is used whenever a custom endpoint is configured,
    which self-hosted S3-compatible stores require.
    """

    def __init__(
        self,
        endpoint_url: str = "",
        region: str = "us-east-1",
        access_key_id: str = "",
        secret_access_key: str = "",
    ):
        self.endpoint_url = endpoint_url or None
        self.region = region
        self._access_key_id = access_key_id or None
        self._secret_access_key = secret_access_key or None
        self._client: Optional[Any] = None

    def _get_client(self) -> Any:
        """Lazy-load and cache the S3 client."""
        if self._client is None:
            config = Config(
                region_name=self.region,
                retries={"max_attempts": 5, "mode": "standard"},
                connect_timeout=3,
                read_timeout=30,
                s3={"addressing_style": "path" if self.endpoint_url else "auto"},
            )
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                config=config,
            )
            logger.info(
                "S3 client initialized",
                extra={"endpoint_url": self.endpoint_url, "region": self.region},
            )
        return self._client

    def get_backend_name(self) -> str:
        return "s3"

    async def ensure_bucket(self, bucket: str) -> None:
        await asyncio.to_thread(self._create_bucket, bucket)

    def _create_bucket(self, bucket: str) -> None:
        client = self._get_client()
        kwargs: dict[str, Any] = {"Bucket": bucket}
        if not self.endpoint_url and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            client.create_bucket(**kwargs)
            logger.info("Bucket created", extra={"bucket": bucket})
        except ClientError as e:
            if _error_code(e) in _BUCKET_EXISTS_CODES:
                logger.debug("Bucket already exists", extra={"bucket": bucket})
                return
            logger.error(
                "create_bucket failed",
                extra={"bucket": bucket, "code": _error_code(e), "error": str(e)},
            )
            raise StorageError(f"create_bucket failed for '{bucket}': {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"create_bucket failed for '{bucket}': {e}") from e

    async def upload_file(self, local_path: Path, bucket: str, object_key: str) -> None:
        try:
            await asyncio.to_thread(self._upload_with_retry, local_path, bucket, object_key)
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            logger.error(
                "Failed to upload file to S3",
                extra={"bucket": bucket, "object_key": object_key, "error": str(e)},
            )
            raise StorageError(f"Failed to upload '{object_key}' to '{bucket}': {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((BotoCoreError, S3UploadFailedError)),
        reraise=True,
    )
    def _upload_with_retry(self, local_path: Path, bucket: str, object_key: str) -> None:
        self._get_client().upload_file(
            str(local_path),
            bucket,
            object_key,
            ExtraArgs={"ContentType": guess_content_type(object_key)},
        )
        logger.debug("Uploaded object", extra={"bucket": bucket, "object_key": object_key})

    async def get_object(self, bucket: str, object_key: str) -> bytes:
        return await asyncio.to_thread(self._get_bytes, bucket, object_key)

    def _get_bytes(self, bucket: str, object_key: str) -> bytes:
        try:
            response = self._get_client().get_object(Bucket=bucket, Key=object_key)
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"Object not found: {bucket}/{object_key}") from e
            raise StorageError(f"Failed to download '{object_key}' from '{bucket}': {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to download '{object_key}' from '{bucket}': {e}") from e

    async def delete_object(self, bucket: str, object_key: str) -> bool:
        return await asyncio.to_thread(self._delete, bucket, object_key)

    def _delete(self, bucket: str, object_key: str) -> bool:
        # S3 DeleteObject succeeds for missing keys, so existence is checked first
        client = self._get_client()
        try:
            client.head_object(Bucket=bucket, Key=object_key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                logger.info("Object to delete not found", extra={"bucket": bucket, "object_key": object_key})
                return False
            raise StorageError(f"Failed to inspect '{object_key}' in '{bucket}': {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to inspect '{object_key}' in '{bucket}': {e}") from e

        try:
            client.delete_object(Bucket=bucket, Key=object_key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete '{object_key}' from '{bucket}': {e}") from e
        return True
