"""Storage backend selection."""

from audiohub.core.config import Settings
from audiohub.storage.base import StorageBackend
from audiohub.storage.gcs import GCSStorageBackend
from audiohub.storage.local import LocalStorageBackend
from audiohub.storage.s3 import S3StorageBackend


def get_storage_backend(settings: Settings) -> StorageBackend:
    """Build the storage backend named by ``STORAGE_BACKEND``.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        return LocalStorageBackend(settings.LOCAL_STORAGE_PATH)
    if backend == "s3":
        return S3StorageBackend(
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        )
    if backend == "gcs":
        return GCSStorageBackend(project_id=settings.GCP_PROJECT_ID)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND!r}")
