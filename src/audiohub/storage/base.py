"""Abstract storage backend interface."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".ts": "video/mp2t",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(key: str) -> str:
    """Infer an HLS artifact's MIME type from its extension."""
    return CONTENT_TYPES.get(Path(key).suffix.lower(), DEFAULT_CONTENT_TYPE)


class ArtifactPackage(Protocol):
    """Anything that can enumerate local artifact files."""

    def list_files(self) -> list[Path]: ...


class StorageBackend(ABC):
    """Abstract base class for object storage backends."""

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass

    @abstractmethod
    async def ensure_bucket(self, bucket: str) -> None:
        """Create the bucket if it does not exist.

        An already existing bucket is not an error.

        Raises:
            StorageError: If the bucket cannot be created
        """
        pass

    @abstractmethod
    async def upload_file(self, local_path: Path, bucket: str, object_key: str) -> None:
        """Upload a local file to ``bucket/object_key``.

        Raises:
            StorageError: If the upload fails
        """
        pass

    @abstractmethod
    async def get_object(self, bucket: str, object_key: str) -> bytes:
        """Fetch an object's full content.

        Raises:
            ObjectNotFoundError: If the object does not exist
            StorageError: If the download fails
        """
        pass

    @abstractmethod
    async def delete_object(self, bucket: str, object_key: str) -> bool:
        """Delete an object.

        Returns:
            True if the object was deleted, False if it did not exist

        Raises:
            StorageError: If the delete fails for any other reason
        """
        pass

    async def upload_package(self, package: ArtifactPackage, bucket: str, prefix: str) -> list[str]:
        """Upload every artifact of a package as ``<prefix>/<filename>``.

        Files are uploaded in sorted order and the first failure aborts the
        rest. Objects uploaded before the failure are left in place.

        Args:
            package: Package whose files to upload
            bucket: Target bucket
            prefix: Key prefix, without trailing slash

        Returns:
            The object keys written, in upload order

        Raises:
            StorageError: If any single upload fails
        """
        files = package.list_files()
        logger.info(
            "Uploading package files",
            extra={
                "backend": self.get_backend_name(),
                "bucket": bucket,
                "prefix": prefix,
                "file_count": len(files),
            },
        )

        keys = []
        for file_path in files:
            object_key = f"{prefix}/{file_path.name}" if prefix else file_path.name
            await self.upload_file(file_path, bucket, object_key)
            keys.append(object_key)

        logger.info(
            "Package upload complete",
            extra={"backend": self.get_backend_name(), "bucket": bucket, "prefix": prefix},
        )
        return keys
