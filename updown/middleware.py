from __future__ import annotations

import asyncio
import time
from typing import List

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from updown.config import Settings

log = structlog.get_logger(__name__)

_CLEANUP_INTERVAL = 300  # purge stale buckets every 5 minutes

# Never rate limited.
UNLIMITED_PATHS = frozenset({"/admin/health"})


def _resolve_client_ip(request: Request, trusted_headers: List[str]) -> str:
    for header in trusted_headers:
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window limiter per client IP, kept on the middleware instance."""

    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings
        self._lock = asyncio.Lock()
        self._buckets: dict[str, dict] = {}
        self._last_cleanup = 0.0

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNLIMITED_PATHS:
            return await call_next(request)
        limit = self.settings.RATE_LIMIT_REQUESTS
        window = self.settings.RATE_LIMIT_WINDOW_SECONDS
        client_ip = _resolve_client_ip(request, self.settings.TRUSTED_PROXY_HEADERS)
        now = time.monotonic()

        async with self._lock:
            if now - self._last_cleanup > _CLEANUP_INTERVAL:
                stale_ips = [
                    ip for ip, b in self._buckets.items()
                    if now - b["window_start"] > window * 2
                ]
                for ip in stale_ips:
                    del self._buckets[ip]
                self._last_cleanup = now

            bucket = self._buckets.get(client_ip)
            if bucket is None or now - bucket["window_start"] > window:
                bucket = self._buckets[client_ip] = {"window_start": now, "count": 1}
            else:
                bucket["count"] += 1
            count = bucket["count"]
            window_start = bucket["window_start"]

        remaining = max(0, limit - count)
        reset_at = max(0, int(window_start + window - now))

        if count > limit:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "RATE_LIMIT_EXCEEDED",
                    "detail": f"Too many requests. Limit: {limit} per {window}s",
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_at),
                    "Retry-After": str(reset_at),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_at)
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        t0 = time.monotonic()
        response = await call_next(request)
        ms = int((time.monotonic() - t0) * 1000)
        log.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=ms,
            client=_resolve_client_ip(request, self.settings.TRUSTED_PROXY_HEADERS),
        )
        response.headers["X-Response-Time-Ms"] = str(ms)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'"
        if not self.settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response
