"""Local filesystem storage backend."""

import asyncio
import logging
import re
import shutil
from pathlib import Path

from audiohub.storage.base import StorageBackend
from audiohub.storage.exceptions import ObjectNotFoundError, StorageError

logger = logging.getLogger(__name__)

_BUCKET_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


class LocalStorageBackend(StorageBackend):
    """Object store laid out as ``<base_path>/<bucket>/<object_key>``."""

    def __init__(self, base_path: str | Path = "data/storage"):
        self.base_path = Path(base_path)

    def get_backend_name(self) -> str:
        return "local"

    async def ensure_bucket(self, bucket: str) -> None:
        bucket_path = self._bucket_path(bucket)
        try:
            bucket_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create bucket '{bucket}': {e}") from e

    async def upload_file(self, local_path: Path, bucket: str, object_key: str) -> None:
        target_path = self._object_path(bucket, object_key)
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, local_path, target_path)
        except OSError as e:
            raise StorageError(f"Failed to store '{object_key}' in '{bucket}': {e}") from e

        logger.debug(
            "Stored object",
            extra={"bucket": bucket, "object_key": object_key, "path": str(target_path)},
        )

    async def get_object(self, bucket: str, object_key: str) -> bytes:
        try:
            target_path = self._object_path(bucket, object_key)
        except StorageError as e:
            raise ObjectNotFoundError(str(e)) from e
        if not target_path.is_file():
            raise ObjectNotFoundError(f"Object not found: {bucket}/{object_key}")
        try:
            return await asyncio.to_thread(target_path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read '{object_key}' from '{bucket}': {e}") from e

    async def delete_object(self, bucket: str, object_key: str) -> bool:
        target_path = self._object_path(bucket, object_key)
        try:
            target_path.unlink()
        except FileNotFoundError:
            logger.info("Object to delete not found", extra={"bucket": bucket, "object_key": object_key})
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete '{object_key}' from '{bucket}': {e}") from e
        return True

    def _bucket_path(self, bucket: str) -> Path:
        if not _BUCKET_PATTERN.match(bucket) or bucket in (".", ".."):
            raise StorageError(f"Invalid bucket name: {bucket!r}")
        return self.base_path / bucket

    def _object_path(self, bucket: str, object_key: str) -> Path:
        """Resolve a key inside its bucket, refusing path traversal."""
        bucket_path = self._bucket_path(bucket).resolve()
        parts = [part for part in object_key.replace("\\", "/").split("/") if part]
        if not parts or any(part in (".", "..") for part in parts):
            raise StorageError(f"Invalid object key: {object_key!r}")
        target = bucket_path.joinpath(*parts).resolve()
        if bucket_path not in target.parents:
            raise StorageError(f"Invalid object key: {object_key!r}")
        return target
