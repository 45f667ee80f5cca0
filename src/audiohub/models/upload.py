"""Upload data models."""

from typing import Optional

from pydantic import BaseModel


class UploadResponse(BaseModel):
    """Uniform response for the upload endpoint, success or failure."""

    success: bool
    upload_id: Optional[str] = None
    message: Optional[str] = None
    filename: Optional[str] = None
    format: Optional[str] = None
    codec: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    duration_secs: Optional[float] = None
    bit_rate: Optional[int] = None
    size_bytes: Optional[int] = None
    hls_path: Optional[str] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
