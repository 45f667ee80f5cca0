"""
Podcast lifecycle consumer.

Listens on the podcast subscription and removes the HLS objects of deleted
podcasts from object storage.
"""

import json
import logging

from pydantic import ValidationError

from audiohub.services.events.bus import BusMessage, MessageBus, TransportError
from audiohub.services.events.models import PodcastEvent, PodcastEventType
from audiohub.services.media.hls import INIT_SEGMENT_NAME, PLAYLIST_NAME
from audiohub.storage.base import StorageBackend
from audiohub.storage.exceptions import StorageError

logger = logging.getLogger(__name__)

SEGMENT_KEY_TEMPLATE = "seg_{index:05d}.m4s"


def extract_prefix(hls_path: str, bucket: str = "audio-hls") -> str:
    """Derive the key prefix from a stored playlist path.

    ``"audio-hls/stem/uuid/playlist.m3u8"`` becomes ``"stem/uuid"``.
    """
    bucket_prefix = f"{bucket}/"
    without_bucket = hls_path[len(bucket_prefix):] if hls_path.startswith(bucket_prefix) else hls_path
    prefix, sep, _filename = without_bucket.rpartition("/")
    return prefix if sep else ""


async def delete_hls_objects(storage: StorageBackend, bucket: str, prefix: str) -> list[str]:
    """Delete the playlist, init segment and media segments under ``prefix``.

    Segments are assumed to be numbered densely from zero; deletion stops at
    the first index whose delete reports not-found or fails. The store is
    not listed.

    Returns:
        Keys that were actually deleted
    """
    deleted: list[str] = []

    playlist_key = f"{prefix}/{PLAYLIST_NAME}"
    try:
        if await storage.delete_object(bucket, playlist_key):
            deleted.append(playlist_key)
    except StorageError as e:
        logger.warning("Failed to delete playlist", extra={"object_key": playlist_key, "error": str(e)})

    init_key = f"{prefix}/{INIT_SEGMENT_NAME}"
    try:
        if await storage.delete_object(bucket, init_key):
            deleted.append(init_key)
    except StorageError as e:
        logger.debug("init segment not deleted", extra={"object_key": init_key, "error": str(e)})

    index = 0
    while True:
        segment_key = f"{prefix}/{SEGMENT_KEY_TEMPLATE.format(index=index)}"
        try:
            if not await storage.delete_object(bucket, segment_key):
                break
        except StorageError as e:
            logger.debug("Segment delete failed, stopping", extra={"object_key": segment_key, "error": str(e)})
            break
        deleted.append(segment_key)
        index += 1

    logger.info(
        "Cleaned up HLS objects",
        extra={"bucket": bucket, "prefix": prefix, "deleted_count": len(deleted), "segments": index},
    )
    return deleted


class DeletionConsumer:
    """Consumes podcast events and garbage-collects HLS packages."""

    def __init__(
        self,
        bus: MessageBus,
        storage: StorageBackend,
        subscription: str,
        bucket: str = "audio-hls",
    ):
        self.bus = bus
        self.storage = storage
        self.subscription = subscription
        self.bucket = bucket

    async def run(self) -> None:
        """Process messages until the transport fails.

        Errors while handling a single message are logged and the message is
        acknowledged; only a TransportError ends the loop.
        """
        logger.info("Deletion consumer started", extra={"subscription": self.subscription})
        try:
            async for message in self.bus.consume(self.subscription):
                try:
                    await self.handle_message(message)
                except Exception as e:
                    logger.error(
                        "Podcast event processing failed",
                        extra={
                            "message_id": message.message_id,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                        exc_info=True,
                    )
                finally:
                    message.ack()
        except TransportError as e:
            logger.error(
                "Deletion consumer transport failed, consumer stopped",
                extra={"subscription": self.subscription, "error": str(e)},
            )
            raise
        logger.warning("Deletion consumer stream ended", extra={"subscription": self.subscription})

    async def handle_message(self, message: BusMessage) -> None:
        """Parse one message and dispatch it by event type."""
        try:
            payload = message.data.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("Undecodable podcast event payload", extra={"error": str(e)})
            return

        if not payload.strip():
            logger.warning("Empty podcast event payload", extra={"message_id": message.message_id})
            return

        try:
            event = PodcastEvent.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to parse podcast event", extra={"error": str(e), "payload": payload[:500]})
            return

        if event.event_type == PodcastEventType.DELETED.value:
            await self.handle_deleted(event)
        elif event.event_type in (PodcastEventType.CREATED.value, PodcastEventType.UPDATED.value):
            logger.info(
                f"Podcast {event.event_type}",
                extra={"podcast_id": event.podcast_id, "title": event.title},
            )
        else:
            logger.warning(
                "Unknown podcast event type",
                extra={"event_type": event.event_type, "podcast_id": event.podcast_id},
            )

    async def handle_deleted(self, event: PodcastEvent) -> None:
        if not event.hls_path:
            logger.warning(
                "podcast deleted event without hls_path",
                extra={"podcast_id": event.podcast_id},
            )
            return

        prefix = extract_prefix(event.hls_path, self.bucket)
        if not prefix:
            logger.warning(
                "Could not derive key prefix from hls_path",
                extra={"podcast_id": event.podcast_id, "hls_path": event.hls_path},
            )
            return

        logger.info(
            "Processing podcast deletion",
            extra={"podcast_id": event.podcast_id, "hls_path": event.hls_path, "prefix": prefix},
        )
        await delete_hls_objects(self.storage, self.bucket, prefix)
