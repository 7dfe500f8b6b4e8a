"""
API Middleware.

Every request gets a trace ID that is bound into the structlog context
for its lifetime and echoed back as ``X-Request-ID``. Dashboard and admin
routes are rate limited per client IP; Twilio webhooks and health checks
are not, since Twilio posts from a shared pool of addresses.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.config import get_settings
from src.logging_config import get_logger, trace_id_var, generate_trace_id

logger = get_logger(__name__)

UNLIMITED_PATH_PREFIXES = ("/api/webhooks/", "/health")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a trace ID and log one access line for it."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-ID") or generate_trace_id()
        token = trace_id_var.set(trace_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            trace_id_var.reset(token)

        elapsed_ms = round((time.monotonic() - started) * 1000, 1)
        response.headers["X-Request-ID"] = trace_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)

        logger.info(
            "api_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
            trace_id=trace_id,
        )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window limit per client IP, held in process memory.

    Limits come from ``RATE_LIMIT_REQUESTS`` and
    ``RATE_LIMIT_WINDOW_SECONDS``.
    """

    def __init__(self, app, max_requests: int | None = None, window_seconds: int | None = None) -> None:
        super().__init__(app)
        settings = get_settings()
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(UNLIMITED_PATH_PREFIXES):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        hits = self._hits[client_ip]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

        if len(hits) >= self.max_requests:
            logger.warning("rate_limit_exceeded", client_ip=client_ip, path=request.url.path)
            return Response(
                content='{"error": "Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(self.window_seconds)},
            )

        hits.append(now)
        return await call_next(request)
