"""Best-effort publication of upload lifecycle events."""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from audiohub.services.events.bus import MessageBus
from audiohub.services.events.models import (
    MediaErrorEvent,
    MediaEventType,
    MediaStartUploadEvent,
    MediaUploadedEvent,
)
from audiohub.services.media.validation import ValidationResult

logger = logging.getLogger(__name__)

MediaEvent = Union[MediaStartUploadEvent, MediaUploadedEvent, MediaErrorEvent]


@dataclass(frozen=True)
class PublishOutcome:
    """Result of one publish attempt: delivered, or failed and logged."""

    delivered: bool
    event_type: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class EventPublisher:
    """Publishes media events to a topic.

    Publication is a side effect of the upload: failures are logged and
    returned as a PublishOutcome, never raised.
    """

    def __init__(self, bus: MessageBus, topic: str = "media", timeout: float = 5.0):
        self.bus = bus
        self.topic = topic
        self.timeout = timeout

    async def publish(self, event: MediaEvent) -> PublishOutcome:
        event_type = MediaEventType(event.event_type).value
        try:
            payload = event.model_dump_json().encode("utf-8")
            message_id = await self.bus.publish(
                self.topic, payload, key=event.key, timeout=self.timeout
            )
        except Exception as e:
            logger.warning(
                "Event publication failed (non-critical)",
                extra={
                    "event_type": event_type,
                    "upload_id": event.upload_id,
                    "topic": self.topic,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return PublishOutcome(delivered=False, event_type=event_type, error=str(e))

        logger.info(
            "Published event",
            extra={
                "event_type": event_type,
                "upload_id": event.upload_id,
                "topic": self.topic,
                "message_id": message_id,
            },
        )
        return PublishOutcome(delivered=True, event_type=event_type, message_id=message_id)

    async def publish_start_upload(self, upload_id: str, filename: str) -> PublishOutcome:
        return await self.publish(MediaStartUploadEvent(upload_id=upload_id, filename=filename))

    async def publish_uploaded(
        self,
        upload_id: str,
        filename: str,
        validation: ValidationResult,
        size_bytes: int,
        hls_path: str,
    ) -> PublishOutcome:
        return await self.publish(
            MediaUploadedEvent(
                upload_id=upload_id,
                filename=filename,
                format=validation.format_name,
                codec=validation.codec,
                sample_rate=validation.sample_rate,
                channels=validation.channels,
                duration_secs=validation.duration_secs,
                bit_rate=validation.bit_rate,
                size_bytes=size_bytes,
                hls_path=hls_path,
            )
        )

    async def publish_error(self, upload_id: str, error_message: str) -> PublishOutcome:
        return await self.publish(MediaErrorEvent(upload_id=upload_id, error_message=error_message))
