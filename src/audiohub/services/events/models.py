"""
Lifecycle event models.

Upload-domain events are published on the ``media`` topic; content-domain
podcast events are consumed from the ``podcast`` topic. All timestamps are
RFC 3339 UTC strings.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    """Current time as an RFC 3339 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class MediaEventType(str, Enum):
    """Upload-domain event types."""

    START_UPLOAD = "media.start_upload"
    UPLOADED = "media.uploaded"
    ERROR = "media.error"


class PodcastEventType(str, Enum):
    """Content-domain event types."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class MediaStartUploadEvent(BaseModel):
    """Published when an upload's file field has been accepted."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal[MediaEventType.START_UPLOAD] = MediaEventType.START_UPLOAD
    upload_id: str
    filename: str
    timestamp: str = Field(default_factory=utc_timestamp)

    @property
    def key(self) -> str:
        return self.upload_id


class MediaUploadedEvent(BaseModel):
    """Published when an HLS package has been stored."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal[MediaEventType.UPLOADED] = MediaEventType.UPLOADED
    upload_id: str
    file_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    filename: str
    format: Optional[str] = None
    codec: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    duration_secs: Optional[float] = None
    bit_rate: Optional[int] = None
    size_bytes: int
    hls_path: str
    timestamp: str = Field(default_factory=utc_timestamp)

    @property
    def key(self) -> str:
        return self.file_id


class MediaErrorEvent(BaseModel):
    """Published when an upload fails at any stage."""

    model_config = ConfigDict(frozen=True)

    event_type: Literal[MediaEventType.ERROR] = MediaEventType.ERROR
    upload_id: str
    error_message: str
    timestamp: str = Field(default_factory=utc_timestamp)

    @property
    def key(self) -> str:
        return self.upload_id


class PodcastEvent(BaseModel):
    """
    Podcast lifecycle notification from the content service.

    ``event_type`` is kept as a plain string so that unknown types can be
    logged and skipped instead of failing validation.
    """

    model_config = ConfigDict(frozen=True)

    event_type: str
    podcast_id: str
    hls_path: Optional[str] = None
    title: Optional[str] = None
    timestamp: str
