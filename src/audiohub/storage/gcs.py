"""Google Cloud Storage backend."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from google.api_core import retry
from google.api_core.exceptions import Conflict, GoogleAPIError, NotFound
from google.cloud import storage

from audiohub.storage.base import StorageBackend, guess_content_type
from audiohub.storage.exceptions import ObjectNotFoundError, StorageError

logger = logging.getLogger(__name__)


class GCSStorageBackend(StorageBackend):
    """Google Cloud Storage backend."""

    def __init__(self, project_id: str = ""):
        self.project_id = project_id or None
        self._client: Optional[storage.Client] = None

        # Configure retry with exponential backoff
        self.retry_policy = retry.Retry(
            initial=1.0,
            maximum=10.0,
            multiplier=2.0,
            deadline=60.0,
            predicate=retry.if_exception_type(GoogleAPIError),
        )

    def _get_client(self) -> storage.Client:
        """Lazy-load and cache the GCS client."""
        if self._client is None:
            self._client = storage.Client(project=self.project_id)
        return self._client

    def get_backend_name(self) -> str:
        return "gcs"

    async def ensure_bucket(self, bucket: str) -> None:
        await asyncio.to_thread(self._create_bucket, bucket)

    def _create_bucket(self, bucket: str) -> None:
        client = self._get_client()
        try:
            if client.lookup_bucket(bucket) is not None:
                return
            client.create_bucket(bucket)
            logger.info("Bucket created", extra={"bucket": bucket})
        except Conflict:
            # Created concurrently
            logger.debug("Bucket already exists", extra={"bucket": bucket})
        except GoogleAPIError as e:
            logger.error("create_bucket failed", extra={"bucket": bucket, "error": str(e)})
            raise StorageError(f"create_bucket failed for '{bucket}': {e}") from e

    async def upload_file(self, local_path: Path, bucket: str, object_key: str) -> None:
        blob = self._get_client().bucket(bucket).blob(object_key)
        try:
            # Run blocking operation in thread pool
            await asyncio.to_thread(
                blob.upload_from_filename,
                str(local_path),
                content_type=guess_content_type(object_key),
                retry=self.retry_policy,
            )
        except GoogleAPIError as e:
            logger.error(
                "Failed to upload file to GCS",
                extra={"bucket": bucket, "object_key": object_key, "error": str(e)},
            )
            raise StorageError(f"Failed to upload '{object_key}' to '{bucket}': {e}") from e

        logger.debug("Uploaded object", extra={"bucket": bucket, "object_key": object_key})

    async def get_object(self, bucket: str, object_key: str) -> bytes:
        blob = self._get_client().bucket(bucket).blob(object_key)
        try:
            return await asyncio.to_thread(blob.download_as_bytes, retry=self.retry_policy)
        except NotFound as e:
            raise ObjectNotFoundError(f"Object not found: {bucket}/{object_key}") from e
        except GoogleAPIError as e:
            raise StorageError(f"Failed to download '{object_key}' from '{bucket}': {e}") from e

    async def delete_object(self, bucket: str, object_key: str) -> bool:
        blob = self._get_client().bucket(bucket).blob(object_key)
        try:
            await asyncio.to_thread(blob.delete)
        except NotFound:
            logger.info("Object to delete not found", extra={"bucket": bucket, "object_key": object_key})
            return False
        except GoogleAPIError as e:
            raise StorageError(f"Failed to delete '{object_key}' from '{bucket}': {e}") from e
        return True
