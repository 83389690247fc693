"""Request-logging middleware for FastAPI."""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("telebridge.api")

# Paths whose bodies may carry signed credentials; only their status is logged.
_SENSITIVE_PREFIXES = ("/api/jitsi/jwt",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach a unique request ID and log method/path/status/duration."""

    async def dispatch(self, request: Request, call_next):  # noqa: ANN001
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        path = request.url.path
        logger.info(
            "method=%s path=%s status_code=%s duration_ms=%.1f request_id=%s",
            request.method,
            path,
            response.status_code,
            duration_ms,
            request_id,
        )
        if response.status_code >= 500 and any(path.startswith(p) for p in _SENSITIVE_PREFIXES):
            logger.warning("Credential request failed request_id=%s", request_id)

        response.headers["X-Request-ID"] = request_id
        return response
