"""Middleware for HTTP error logging."""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

UPLOAD_ID_HEADER = "x-upload-id"


class HTTPErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to ensure all HTTP errors are logged.

    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level

    The request body is never read here; upload bodies are streamed by the
    route handler.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log errors.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            HTTP response
        """
        start_time = time.time()
        upload_id = request.headers.get(UPLOAD_ID_HEADER)

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000

        if 400 <= response.status_code < 500:
            logger.warning(
                "Client error response",
                extra={
                    "http_status": response.status_code,
                    "method": request.method,
                    "path": request.url.path,
                    "upload_id": upload_id,
                    "duration_ms": duration_ms,
                },
            )
        elif response.status_code >= 500:
            logger.error(
                "Server error response",
                extra={
                    "http_status": response.status_code,
                    "method": request.method,
                    "path": request.url.path,
                    "upload_id": upload_id,
                    "duration_ms": duration_ms,
                },
            )

        return response
