"""Media API routes: upload, progress stream and HLS artifact retrieval."""

import logging
from uuid import uuid4

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from audiohub.core.middleware import UPLOAD_ID_HEADER
from audiohub.services.container import MediaServices
from audiohub.services.media.progress_stream import progress_events
from audiohub.storage.base import guess_content_type
from audiohub.storage.exceptions import ObjectNotFoundError, StorageError

router = APIRouter(prefix="/api/media", tags=["media"])
hls_router = APIRouter(tags=["hls"])
logger = logging.getLogger(__name__)


def _services(request: Request) -> MediaServices:
    return request.app.state.services


def _content_length(request: Request) -> int | None:
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        length = int(value)
    except ValueError:
        return None
    return length if length >= 0 else None


@router.post("/upload")
async def upload_media(request: Request) -> JSONResponse:
    """Upload an audio file and convert it to HLS.

    The body is read incrementally so oversized or mislabelled files are
    rejected before they are fully received. Progress can be followed on
    ``/api/media/progress/{upload_id}`` using the id sent in ``x-upload-id``.
    """
    services = _services(request)
    upload_id = request.headers.get(UPLOAD_ID_HEADER) or str(uuid4())

    result = await services.ingestor.ingest(
        upload_id,
        request.stream(),
        request.headers.get("content-type", ""),
        total_expected=_content_length(request),
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.response.model_dump(exclude_none=True),
    )


@router.get("/progress/{upload_id}")
async def upload_progress(upload_id: str, request: Request) -> StreamingResponse:
    """Stream progress snapshots for an upload as Server-Sent Events."""
    services = _services(request)
    settings = services.settings
    events = progress_events(
        services.progress,
        upload_id,
        interval=settings.progress_poll_interval,
        lookup_attempts=settings.PROGRESS_LOOKUP_ATTEMPTS,
        grace_period=settings.PROGRESS_GRACE_SECONDS,
        keepalive_interval=settings.PROGRESS_KEEPALIVE_SECONDS,
    )
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@hls_router.get("/hls/{object_key:path}")
async def get_hls_object(object_key: str, request: Request) -> Response:
    """Serve a stored playlist or segment from the HLS bucket."""
    services = _services(request)
    bucket = services.settings.HLS_BUCKET
    try:
        data = await services.storage.get_object(bucket, object_key)
    except ObjectNotFoundError:
        return PlainTextResponse("Not found", status_code=404)
    except StorageError as e:
        logger.error("Failed to read HLS object", extra={"object_key": object_key, "error": str(e)})
        return PlainTextResponse("Storage error", status_code=500)

    return Response(content=data, media_type=guess_content_type(object_key))
