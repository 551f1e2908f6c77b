# app/middleware.py
"""
HTTP middleware stack.

Provides:
- X-Request-Id handling (accepts client-provided or generates UUID4)
- Per-request access log line with latency
- Security headers on every response
- Request body size limit
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

_logger = logging.getLogger(__name__)

# Validation for client-provided request IDs
MAX_REQUEST_ID_LENGTH = 64
# Allow alphanumeric, hyphens, underscores only (safe for logging)
SAFE_REQUEST_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_request_id(request_id: Optional[str]) -> Optional[str]:
    """
    Validate a client-provided request ID.

    Returns:
        The request_id if valid, None otherwise.
    """
    if not request_id:
        return None
    if len(request_id) > MAX_REQUEST_ID_LENGTH:
        return None
    if not SAFE_REQUEST_ID_PATTERN.match(request_id):
        return None
    return request_id


def get_request_id(request: Request) -> str:
    """Request ID set by RequestContextMiddleware, or "unknown"."""
    return getattr(request.state, "request_id", None) or "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an ID and logs it on the way out.

    Device IDs appear in paths; only method, route and status are logged.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = validate_request_id(request.headers.get("x-request-id")) or str(uuid.uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Request-Id"] = request_id
        _logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({latency_ms:.1f}ms)",
            extra={"request_id": request_id},
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests exceeding size limit to prevent payload bombs."""

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self._max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self._max_bytes:
            return JSONResponse(
                status_code=413,
                content={"error": "Request entity too large"},
            )
        return await call_next(request)
