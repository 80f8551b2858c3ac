"""
Request context middleware for observability.

Injects request_id, correlation_id into every request so all log lines of
one request can be found together, and logs slow requests.

Headers:
- X-Request-ID: Unique ID for this request (generated if not provided)
- X-Correlation-ID: ID spanning multiple services (passed through)
"""

import re
import time
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.context import (
    clear_context,
    generate_request_id,
    set_correlation_id,
    set_request_id,
)

logger = structlog.get_logger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 500.0

# Request ID validation to prevent log injection attacks
MAX_ID_LENGTH = 64
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")


def _validate_id(value: Optional[str]) -> Optional[str]:
    """
    Validate and sanitize request/correlation IDs.

    Returns None if invalid (a generated ID is used instead).
    """
    if not value:
        return None
    if len(value) > MAX_ID_LENGTH:
        return None
    if not SAFE_ID_PATTERN.match(value):
        return None
    return value


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Extracts X-Request-ID from headers or generates one
    - Extracts X-Correlation-ID for distributed tracing
    - Binds both to structlog for automatic log enrichment
    - Echoes them in response headers
    - Cleans up context after the request completes
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        provided_id = _validate_id(request.headers.get("X-Request-ID"))
        request_id = provided_id or generate_request_id()
        set_request_id(request_id)
        request.state.request_id = request_id

        correlation_id = _validate_id(request.headers.get("X-Correlation-ID"))
        if correlation_id:
            set_correlation_id(correlation_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )

        start_time = time.perf_counter()
        status_code = 500  # Default to error in case of exception

        try:
            response = await call_next(request)
            status_code = response.status_code

            response.headers["X-Request-ID"] = request_id
            if correlation_id:
                response.headers["X-Correlation-ID"] = correlation_id

            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms >= SLOW_REQUEST_THRESHOLD_MS and not request.url.path.startswith("/health"):
                logger.warning(
                    "Slow request",
                    duration_ms=round(duration_ms, 1),
                    status_code=status_code,
                )

            # Clean up context to prevent leaking to next request
            clear_context()
            structlog.contextvars.clear_contextvars()
