"""Health check endpoint for the audiohub media service."""

from fastapi import APIRouter

from audiohub.core.config import settings
from audiohub.models.upload import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Returns service status, name, and version information without touching
    storage or the event bus.
    """
    return HealthResponse(
        status="ok",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )
