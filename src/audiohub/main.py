"""Main application entrypoint for the audiohub media service."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from audiohub.api.v1 import routes_health
from audiohub.api.v1.routes_media import hls_router, router as media_router
from audiohub.core.config import Settings, settings as default_settings
from audiohub.core.logging import setup_logging
from audiohub.core.middleware import HTTPErrorLoggingMiddleware
from audiohub.services.container import MediaServices, build_services
from audiohub.services.events.bus import MessageBus, TransportError
from audiohub.storage.base import StorageBackend
from audiohub.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)


async def _run_deletion_consumer(services: MediaServices) -> None:
    consumer = services.deletion_consumer()
    try:
        await consumer.run()
    except TransportError:
        # Already logged by the consumer; the service keeps serving uploads.
        return


async def _sweep_progress(store: ProgressStore, interval: float) -> None:
    """Periodically drop finished progress records past their retention."""
    while True:
        await asyncio.sleep(interval)
        evicted = store.evict_expired()
        if evicted:
            logger.debug("Evicted expired progress records", extra={"evicted": evicted})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    services: MediaServices = app.state.services
    consumer_task: Optional[asyncio.Task] = None
    sweep_interval = max(services.settings.PROGRESS_RETENTION_SECONDS, 1.0)
    sweep_task = asyncio.create_task(_sweep_progress(services.progress, sweep_interval))

    if services.settings.DELETION_CONSUMER_ENABLED:
        consumer_task = asyncio.create_task(_run_deletion_consumer(services))

    logger.info(
        "Service started",
        extra={
            "service": services.settings.SERVICE_NAME,
            "deletion_consumer": consumer_task is not None,
        },
    )
    try:
        yield
    finally:
        for task in (consumer_task, sweep_task):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await services.close()
        logger.info("Service stopped")


def create_app(
    app_settings: Optional[Settings] = None,
    storage_backend: Optional[StorageBackend] = None,
    message_bus: Optional[MessageBus] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings override, defaults to the environment settings
        storage_backend: Storage backend override
        message_bus: Message bus override

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app_settings = app_settings or default_settings

    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=app_settings.SERVICE_NAME,
        version=app_settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.services = build_services(
        app_settings, storage_backend=storage_backend, message_bus=message_bus
    )

    app.add_middleware(HTTPErrorLoggingMiddleware)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(media_router)
    app.include_router(hls_router)

    return app


# Export app instance for ASGI servers
app = create_app()
