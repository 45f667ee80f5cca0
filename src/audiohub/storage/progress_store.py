"""Upload progress tracking store."""

import threading
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class ProgressStage(str, Enum):
    """Upload pipeline stage enumeration."""

    RECEIVING = "receiving"  # Request body is being streamed in
    VALIDATING = "validating"  # ffprobe policy probe and decode check
    CONVERTING = "converting"  # HLS transcoding
    UPLOADING = "uploading"  # Package upload to object storage
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStage.DONE, ProgressStage.ERROR)


_STAGE_ORDER = {
    ProgressStage.RECEIVING: 0,
    ProgressStage.VALIDATING: 1,
    ProgressStage.CONVERTING: 2,
    ProgressStage.UPLOADING: 3,
    ProgressStage.DONE: 4,
}


class ProgressTransitionError(ValueError):
    """Raised when a write would move a record backwards or out of a terminal stage."""


@dataclass
class ProgressRecord:
    """Progress snapshot of one upload."""

    stage: ProgressStage = ProgressStage.RECEIVING
    bytes_received: int = 0
    total_expected: Optional[int] = None
    message: Optional[str] = None
    finished_at: Optional[float] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for the progress stream; absent message is omitted."""
        data = asdict(self)
        data.pop("finished_at")
        data["stage"] = self.stage.value
        if self.message is None:
            data.pop("message")
        return data


class ProgressStore:
    """Thread-safe in-memory map of upload id to progress record.

    Each upload id has a single writer (its ingestion task); any number of
    readers get copies, so a snapshot never changes under them. Records that
    reached a terminal stage are dropped after ``retention_seconds``.
    """

    def __init__(self, retention_seconds: float = 300.0):
        self._records: Dict[str, ProgressRecord] = {}
        self._lock = threading.Lock()
        self.retention_seconds = retention_seconds

    def create(self, upload_id: str, total_expected: Optional[int] = None) -> ProgressRecord:
        """Start tracking an upload in the receiving stage.

        Raises:
            ProgressTransitionError: If the id is already tracked and not finished
        """
        with self._lock:
            self._evict_expired_locked(time.monotonic())
            existing = self._records.get(upload_id)
            if existing is not None and not existing.stage.is_terminal:
                raise ProgressTransitionError(f"Upload {upload_id} is already in progress")
            record = ProgressRecord(total_expected=total_expected)
            self._records[upload_id] = record
            return replace(record)

    def get(self, upload_id: str) -> Optional[ProgressRecord]:
        """Return a copy of the record, or None if not tracked."""
        with self._lock:
            record = self._records.get(upload_id)
            return replace(record) if record is not None else None

    def contains(self, upload_id: str) -> bool:
        with self._lock:
            return upload_id in self._records

    def update_bytes(self, upload_id: str, bytes_received: int) -> None:
        """Record the running byte count; counts never decrease."""
        with self._lock:
            record = self._require_locked(upload_id)
            if record.stage is not ProgressStage.RECEIVING:
                raise ProgressTransitionError(
                    f"Upload {upload_id} is no longer receiving ({record.stage.value})"
                )
            if bytes_received < record.bytes_received:
                raise ProgressTransitionError(
                    f"Byte count for {upload_id} would decrease "
                    f"({record.bytes_received} -> {bytes_received})"
                )
            record.bytes_received = bytes_received

    def set_stage(
        self, upload_id: str, stage: ProgressStage, message: Optional[str] = None
    ) -> None:
        """Advance an upload to ``stage``.

        ``ERROR`` may follow any non-terminal stage; every other stage must
        come strictly after the current one.
        """
        with self._lock:
            record = self._require_locked(upload_id)
            if record.stage.is_terminal:
                raise ProgressTransitionError(
                    f"Upload {upload_id} already finished ({record.stage.value})"
                )
            if stage is not ProgressStage.ERROR and _STAGE_ORDER[stage] <= _STAGE_ORDER[record.stage]:
                raise ProgressTransitionError(
                    f"Cannot move upload {upload_id} from {record.stage.value} to {stage.value}"
                )
            record.stage = stage
            record.message = message
            if stage.is_terminal:
                record.finished_at = time.monotonic()

    def fail(self, upload_id: str, message: str) -> None:
        """Mark an upload as failed unless it already finished."""
        with self._lock:
            record = self._records.get(upload_id)
            if record is None or record.stage.is_terminal:
                return
            record.stage = ProgressStage.ERROR
            record.message = message
            record.finished_at = time.monotonic()

    def remove(self, upload_id: str, finished_at: Optional[float] = None) -> None:
        """Stop tracking an upload.

        With ``finished_at`` the record is only dropped if it is the one that
        finished at that time, so a newer upload reusing the id is kept.
        """
        with self._lock:
            record = self._records.get(upload_id)
            if record is None:
                return
            if finished_at is not None and record.finished_at != finished_at:
                return
            del self._records[upload_id]

    def evict_expired(self) -> int:
        """Drop finished records older than the retention period."""
        with self._lock:
            return self._evict_expired_locked(time.monotonic())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _require_locked(self, upload_id: str) -> ProgressRecord:
        record = self._records.get(upload_id)
        if record is None:
            raise KeyError(upload_id)
        return record

    def _evict_expired_locked(self, now: float) -> int:
        expired = [
            upload_id
            for upload_id, record in self._records.items()
            if record.finished_at is not None
            and now - record.finished_at >= self.retention_seconds
        ]
        for upload_id in expired:
            del self._records[upload_id]
        return len(expired)
