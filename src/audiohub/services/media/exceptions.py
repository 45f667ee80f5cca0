"""Custom exceptions for the media ingestion pipeline.

Every exception carries the HTTP status the upload endpoint answers with
when it reaches the ingestion boundary.
"""


class MediaException(Exception):
    """Base exception for the media pipeline."""

    status_code: int = 500


class UploadRejectedError(MediaException):
    """Exception raised when the request itself is unusable."""

    status_code = 400


class UnsupportedFormatError(MediaException):
    """Exception raised when the extension or file signature is not an accepted audio format."""

    status_code = 415


class PayloadTooLargeError(MediaException):
    """Exception raised when the payload exceeds the size limit."""

    status_code = 413


class ContentValidationError(MediaException):
    """Exception raised when probing or decoding finds the audio unacceptable."""

    status_code = 422


class ToolLaunchError(MediaException):
    """Exception raised when an external tool cannot be started."""
    pass


class ProcessTimeoutError(MediaException):
    """Exception raised when an external process exceeds its time limit."""
    pass


class TranscodeError(MediaException):
    """Exception raised when HLS conversion fails."""
    pass


class DispatchError(MediaException):
    """Exception raised when work could not be run on the process pool."""
    pass
