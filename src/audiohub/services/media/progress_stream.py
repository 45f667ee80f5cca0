"""Server-Sent Events stream of upload progress snapshots."""

import asyncio
import json
import logging
from typing import AsyncIterator

from audiohub.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)

NOT_FOUND_PAYLOAD = json.dumps({"error": "upload not found"})
KEEPALIVE_COMMENT = ": keep-alive\n\n"


def format_event(data: str, event: str | None = None) -> str:
    """Encode one SSE message."""
    lines = []
    if event:
        lines.append(f"event: {event}")
    for line in data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


async def progress_events(
    store: ProgressStore,
    upload_id: str,
    interval: float = 0.3,
    lookup_attempts: int = 100,
    grace_period: float = 5.0,
    keepalive_interval: float = 15.0,
) -> AsyncIterator[str]:
    """Yield SSE-encoded progress snapshots for one upload.

    The stream may be opened before the upload request has created its
    record, so a missing record is polled for up to ``lookup_attempts``
    intervals before an ``error`` event ends the stream. After a terminal
    snapshot the stream stays open for ``grace_period`` seconds, then the
    record is evicted and the stream ends.
    """
    attempts = 0
    while not store.contains(upload_id):
        if attempts >= lookup_attempts:
            logger.info("Progress stream gave up waiting for upload", extra={"upload_id": upload_id})
            yield format_event(NOT_FOUND_PAYLOAD, event="error")
            return
        await asyncio.sleep(interval)
        attempts += 1

    while True:
        record = store.get(upload_id)
        if record is None:
            # Evicted by another stream or by retention
            return

        yield format_event(json.dumps(record.to_dict()))

        if record.stage.is_terminal:
            break
        await asyncio.sleep(interval)

    remaining = grace_period
    while remaining > 0:
        step = min(keepalive_interval, remaining)
        await asyncio.sleep(step)
        remaining -= step
        if remaining > 0:
            yield KEEPALIVE_COMMENT

    store.remove(upload_id, finished_at=record.finished_at)
    logger.debug("Progress record evicted", extra={"upload_id": upload_id})
