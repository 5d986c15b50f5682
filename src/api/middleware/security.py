"""Security middleware for PostRelay.

Provides:
- Request ID middleware (X-Request-ID header, request-scoped log context)
- Security headers middleware (X-Content-Type-Options, etc.)
- Rate limiting middleware (in-memory, per-IP)
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from src.api.version import API_VERSION

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request ID Middleware
# ---------------------------------------------------------------------------


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate or assign an X-Request-ID for every request.

    The id is stored on ``request.state`` so error handlers can echo it.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "%s %s -> %d [%s] %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            request_id,
            (time.monotonic() - started) * 1000,
        )
        return response


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add standard security headers and the service version to every response.

    HSTS is only sent when ``hsts`` is enabled (non-debug deployments).
    """

    def __init__(self, app: ASGIApp, hsts: bool = True) -> None:
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-API-Version"] = API_VERSION
        if self.hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response


# ---------------------------------------------------------------------------
# Rate Limiting Middleware
# ---------------------------------------------------------------------------


@dataclass
class _RateLimitEntry:
    """Track request counts within a time window for a single client."""

    count: int = 0
    window_start: float = 0.0


# Maximum number of tracked client IPs before pruning stale entries.
_MAX_TRACKED_CLIENTS = 50_000
# How often (in requests) to run the pruning sweep.
_PRUNE_INTERVAL = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory per-IP rate limiter.

    Limits each client IP to ``max_requests`` within ``window_seconds``
    and answers 429 with ``Retry-After`` beyond that. Paths listed in
    ``exempt_paths`` (the health check) are never limited.

    Per-process only: with several workers the effective limit is
    ``workers * max_requests``.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_requests: int = 100,
        window_seconds: int = 60,
        exempt_paths: tuple[str, ...] = ("/api/v1/health",),
    ) -> None:
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_paths = exempt_paths
        self._clients: dict[str, _RateLimitEntry] = defaultdict(_RateLimitEntry)
        self._request_counter: int = 0

    def _get_client_ip(self, request: Request) -> str:
        """Client IP from the ASGI connection; X-Forwarded-For is not trusted."""
        return request.client.host if request.client else "unknown"

    def _prune_stale(self, now: float) -> None:
        stale = [ip for ip, entry in self._clients.items() if now - entry.window_start >= self.window_seconds]
        for ip in stale:
            del self._clients[ip]

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        now = time.monotonic()

        self._request_counter += 1
        if self._request_counter >= _PRUNE_INTERVAL or len(self._clients) > _MAX_TRACKED_CLIENTS:
            self._prune_stale(now)
            self._request_counter = 0

        entry = self._clients[client_ip]
        if now - entry.window_start >= self.window_seconds:
            entry.count = 0
            entry.window_start = now

        entry.count += 1

        if entry.count > self.max_requests:
            retry_after = int(self.window_seconds - (now - entry.window_start))
            logger.warning("Rate limit exceeded for %s on %s", client_ip, request.url.path)
            return Response(
                content='{"detail":"Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(max(retry_after, 1))},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.max_requests - entry.count))
        return response
