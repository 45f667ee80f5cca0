"""Per-application service container."""

import logging
from dataclasses import dataclass
from typing import Optional

from audiohub.core.config import Settings
from audiohub.services.events.bus import InMemoryMessageBus, MessageBus, PubSubMessageBus
from audiohub.services.events.consumer import DeletionConsumer
from audiohub.services.events.publisher import EventPublisher
from audiohub.services.media.dispatch import ProcessDispatcher
from audiohub.services.media.ingest import UploadIngestor
from audiohub.storage.base import StorageBackend
from audiohub.storage.factory import get_storage_backend
from audiohub.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)


@dataclass
class MediaServices:
    """Long-lived collaborators shared by all requests of one app."""

    settings: Settings
    storage: StorageBackend
    progress: ProgressStore
    dispatcher: ProcessDispatcher
    bus: MessageBus
    publisher: EventPublisher
    ingestor: UploadIngestor

    def deletion_consumer(self) -> DeletionConsumer:
        return DeletionConsumer(
            bus=self.bus,
            storage=self.storage,
            subscription=self.settings.PODCAST_SUBSCRIPTION,
            bucket=self.settings.HLS_BUCKET,
        )

    async def close(self) -> None:
        self.dispatcher.shutdown()
        await self.bus.close()


def get_message_bus(settings: Settings) -> MessageBus:
    """Get the configured message bus.

    Raises:
        ValueError: If EVENT_BUS_BACKEND is not supported
    """
    backend = settings.EVENT_BUS_BACKEND.lower()
    if backend == "pubsub":
        return PubSubMessageBus(project_id=settings.GCP_PROJECT_ID)
    if backend == "memory":
        return InMemoryMessageBus()
    raise ValueError(f"Unsupported event bus backend: {settings.EVENT_BUS_BACKEND}")


def build_services(
    settings: Settings,
    storage_backend: Optional[StorageBackend] = None,
    message_bus: Optional[MessageBus] = None,
) -> MediaServices:
    """Assemble the service container from settings.

    Args:
        settings: Application settings
        storage_backend: Storage override, built from settings when omitted
        message_bus: Bus override, built from settings when omitted
    """
    storage = storage_backend or get_storage_backend(settings)
    bus = message_bus or get_message_bus(settings)
    progress = ProgressStore(retention_seconds=settings.PROGRESS_RETENTION_SECONDS)
    dispatcher = ProcessDispatcher(max_workers=settings.PROCESS_POOL_WORKERS)
    publisher = EventPublisher(
        bus, topic=settings.MEDIA_TOPIC, timeout=settings.EVENT_PUBLISH_TIMEOUT_SECONDS
    )
    ingestor = UploadIngestor(
        storage=storage,
        progress=progress,
        publisher=publisher,
        dispatcher=dispatcher,
        bucket=settings.HLS_BUCKET,
        max_upload_bytes=settings.max_upload_bytes,
        tmp_dir=settings.upload_tmp_dir,
        staging_dir=settings.hls_staging_dir,
        ffprobe_timeout=settings.FFPROBE_TIMEOUT_SECONDS,
        decode_timeout=settings.FFMPEG_DECODE_TIMEOUT_SECONDS,
        hls_timeout=settings.FFMPEG_HLS_TIMEOUT_SECONDS,
    )
    logger.info(
        "Media services initialised",
        extra={
            "storage_backend": storage.get_backend_name(),
            "event_bus": type(bus).__name__,
            "hls_bucket": settings.HLS_BUCKET,
        },
    )
    return MediaServices(
        settings=settings,
        storage=storage,
        progress=progress,
        dispatcher=dispatcher,
        bus=bus,
        publisher=publisher,
        ingestor=ingestor,
    )
