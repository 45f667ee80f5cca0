"""Storage backend exceptions."""


class StorageError(Exception):
    """Exception raised when an object store operation fails."""

    status_code: int = 500


class ObjectNotFoundError(StorageError):
    """Exception raised when a requested object does not exist."""

    status_code = 404
