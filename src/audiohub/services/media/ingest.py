"""Upload ingestion pipeline.

Streams an uploaded audio file to a temporary file with early rejection,
then validates, transcodes to HLS and stores the package, keeping the
upload's progress record current at every step.
"""

import asyncio
import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from audiohub.core.logging import upload_id_context
from audiohub.models.upload import UploadResponse
from audiohub.services.events.publisher import EventPublisher
from audiohub.services.media.dispatch import ProcessDispatcher
from audiohub.services.media.exceptions import (
    MediaException,
    PayloadTooLargeError,
    UploadRejectedError,
)
from audiohub.services.media.hls import PLAYLIST_NAME, StagingPackage, convert_to_hls
from audiohub.services.media.multipart import FilePart, MultipartFileReader
from audiohub.services.media.validation import (
    MAGIC_HEADER_SIZE,
    ValidationResult,
    check_decode,
    check_extension_compatibility,
    detect_format,
    probe_audio,
    validate_extension,
)
from audiohub.storage.base import StorageBackend
from audiohub.storage.exceptions import StorageError
from audiohub.storage.progress_store import (
    ProgressStage,
    ProgressStore,
    ProgressTransitionError,
)

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Audio file passed validation, was converted to HLS and uploaded to storage"


@dataclass
class UploadSession:
    """State of one upload while it is being processed."""

    upload_id: str
    filename: str = ""
    extension: str = ""
    bytes_received: int = 0
    total_expected: Optional[int] = None
    input_path: Optional[Path] = None


@dataclass
class IngestResult:
    """HTTP status and body produced by the pipeline."""

    status_code: int
    response: UploadResponse


def object_stem(filename: str) -> str:
    """Sanitised file stem used as the first component of the key prefix."""
    stem = Path(filename.replace("\\", "/")).stem
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", stem).strip(".")[:100]
    if not safe.strip("_"):
        return "audio"
    return safe


class UploadIngestor:
    """Drives one upload through receive, validate, convert and upload."""

    def __init__(
        self,
        storage: StorageBackend,
        progress: ProgressStore,
        publisher: EventPublisher,
        dispatcher: ProcessDispatcher,
        bucket: str = "audio-hls",
        max_upload_bytes: int = 50 * 1024 * 1024,
        tmp_dir: Optional[str] = None,
        staging_dir: Optional[str] = None,
        ffprobe_timeout: float = 30,
        decode_timeout: float = 300,
        hls_timeout: float = 600,
    ):
        self.storage = storage
        self.progress = progress
        self.publisher = publisher
        self.dispatcher = dispatcher
        self.bucket = bucket
        self.max_upload_bytes = max_upload_bytes
        self.tmp_dir = tmp_dir
        self.staging_dir = staging_dir
        self.ffprobe_timeout = ffprobe_timeout
        self.decode_timeout = decode_timeout
        self.hls_timeout = hls_timeout

    async def ingest(
        self,
        upload_id: str,
        body: AsyncIterator[bytes],
        content_type: str,
        total_expected: Optional[int] = None,
    ) -> IngestResult:
        """Run the full pipeline for one multipart request body.

        Never raises for pipeline failures: every error is translated into an
        IngestResult carrying the matching status code. The temporary input
        file and the staging package are removed on every exit path.

        Args:
            upload_id: Correlation id for progress records and events
            body: Raw request body stream
            content_type: Request Content-Type header, including the boundary
            total_expected: Declared request size, if known

        Returns:
            Status code and uniform upload response
        """
        try:
            self.progress.create(upload_id, total_expected=total_expected)
        except ProgressTransitionError as e:
            logger.warning("Rejected duplicate upload id", extra={"upload_id": upload_id})
            return IngestResult(
                status_code=409,
                response=UploadResponse(success=False, upload_id=upload_id, error=str(e)),
            )

        token = upload_id_context.set(upload_id)
        session = UploadSession(upload_id=upload_id, total_expected=total_expected)
        package: Optional[StagingPackage] = None
        try:
            reader = MultipartFileReader(body, content_type)
            part = await reader.next_file()
            if part is None:
                raise UploadRejectedError("No file found in the request")

            session.filename = part.filename
            session.extension = validate_extension(part.filename)
            await self.publisher.publish_start_upload(upload_id, session.filename)

            await self._receive(session, part)

            self.progress.set_stage(upload_id, ProgressStage.VALIDATING)
            validation = await self._validate(session)

            self.progress.set_stage(upload_id, ProgressStage.CONVERTING)
            package = await self.dispatcher.run(
                convert_to_hls,
                session.input_path,
                staging_root=self.staging_dir,
                timeout=self.hls_timeout,
            )
            logger.info("HLS conversion OK", extra={"output_dir": str(package.output_dir)})

            self.progress.set_stage(upload_id, ProgressStage.UPLOADING)
            hls_path = await self._store_package(session, package)

            self.progress.set_stage(upload_id, ProgressStage.DONE)
            await self.publisher.publish_uploaded(
                upload_id,
                session.filename,
                validation,
                size_bytes=session.bytes_received,
                hls_path=hls_path,
            )
            return IngestResult(
                status_code=200,
                response=self._success_response(session, validation, hls_path),
            )

        except MediaException as e:
            return await self._fail(session, e.status_code, str(e))
        except StorageError as e:
            return await self._fail(session, 500, f"Storage upload failed: {e}")
        except asyncio.CancelledError:
            self.progress.fail(upload_id, "Upload cancelled")
            logger.warning("Upload cancelled", extra={"bytes_received": session.bytes_received})
            raise
        except Exception as e:
            logger.error(
                "Unexpected error during upload",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return await self._fail(session, 500, "Internal server error")
        finally:
            if package is not None:
                package.release()
            self._discard_input(session)
            upload_id_context.reset(token)

    async def _receive(self, session: UploadSession, part: FilePart) -> None:
        """Stream the file field to a temporary file, sniffing its format early."""
        try:
            fd, path = tempfile.mkstemp(
                prefix="upload_", suffix=f".{session.extension}", dir=self.tmp_dir
            )
        except OSError as e:
            raise MediaException(f"Could not create temporary file: {e}") from e
        session.input_path = Path(path)

        logger.info(
            "Start receiving file",
            extra={"file_name": session.filename, "extension": session.extension},
        )

        head = bytearray()
        sniffed = False
        try:
            with os.fdopen(fd, "wb") as out:
                async for chunk in part.chunks():
                    session.bytes_received += len(chunk)
                    if session.bytes_received > self.max_upload_bytes:
                        raise PayloadTooLargeError(
                            f"File is too large: {session.bytes_received // (1024 * 1024)} MB "
                            f"(maximum: {self.max_upload_bytes // (1024 * 1024)} MB)"
                        )

                    if not sniffed:
                        head.extend(chunk)
                        if len(head) >= MAGIC_HEADER_SIZE:
                            detected = detect_format(bytes(head))
                            check_extension_compatibility(session.extension, detected)
                            logger.info(
                                "Magic bytes check passed",
                                extra={"extension": session.extension, "detected": detected},
                            )
                            sniffed = True
                            head = bytearray()

                    out.write(chunk)
                    self.progress.update_bytes(session.upload_id, session.bytes_received)

                out.flush()
                os.fsync(out.fileno())
        except OSError as e:
            raise MediaException(f"Could not write temporary file: {e}") from e

        if session.bytes_received == 0:
            raise UploadRejectedError("File is empty")
        if not sniffed:
            raise UploadRejectedError("File is too small to determine its format")

        logger.info(
            "File received",
            extra={"size_bytes": session.bytes_received, "path": str(session.input_path)},
        )

    async def _validate(self, session: UploadSession) -> ValidationResult:
        validation = await self.dispatcher.run(
            probe_audio, session.input_path, timeout=self.ffprobe_timeout
        )
        await self.dispatcher.run(check_decode, session.input_path, timeout=self.decode_timeout)
        return validation

    async def _store_package(self, session: UploadSession, package: StagingPackage) -> str:
        prefix = f"{object_stem(session.filename)}/{uuid.uuid4()}"
        await self.storage.ensure_bucket(self.bucket)
        await self.storage.upload_package(package, self.bucket, prefix)
        hls_path = f"{self.bucket}/{prefix}/{PLAYLIST_NAME}"
        logger.info("Upload complete", extra={"hls_path": hls_path})
        return hls_path

    def _success_response(
        self, session: UploadSession, validation: ValidationResult, hls_path: str
    ) -> UploadResponse:
        return UploadResponse(
            success=True,
            upload_id=session.upload_id,
            message=SUCCESS_MESSAGE,
            filename=session.filename,
            format=validation.format_name,
            codec=validation.codec,
            sample_rate=validation.sample_rate,
            channels=validation.channels,
            duration_secs=validation.duration_secs,
            bit_rate=validation.bit_rate,
            size_bytes=session.bytes_received,
            hls_path=hls_path,
        )

    async def _fail(self, session: UploadSession, status_code: int, message: str) -> IngestResult:
        self.progress.fail(session.upload_id, message)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "Upload failed",
            extra={
                "http_status": status_code,
                "error": message,
                "file_name": session.filename or None,
                "bytes_received": session.bytes_received,
            },
        )
        await self.publisher.publish_error(session.upload_id, message)
        return IngestResult(
            status_code=status_code,
            response=UploadResponse(
                success=False,
                upload_id=session.upload_id,
                filename=session.filename or None,
                error=message,
            ),
        )

    @staticmethod
    def _discard_input(session: UploadSession) -> None:
        if session.input_path is None:
            return
        try:
            session.input_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "Could not remove temporary upload file",
                extra={"path": str(session.input_path), "error": str(e)},
            )
