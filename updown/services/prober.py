from __future__ import annotations

import asyncio
import time
import httpx
import structlog

from updown.config import Settings
from updown.schemas import ProbeResult

log = structlog.get_logger(__name__)

# Stored instead of an HTTP status when no response came back at all.
PROBE_FAILED = 0


def build_client(settings: Settings) -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=settings.PROBE_CONCURRENCY, max_keepalive_connections=10
    )
    return httpx.AsyncClient(
        limits=limits,
        timeout=settings.PROBE_TIMEOUT,
        follow_redirects=True,
        headers={"User-Agent": settings.PROBE_USER_AGENT},
    )


async def _status(client: httpx.AsyncClient, url: str, timeout: float) -> int:
    # Streamed so the body is never downloaded; the status line is all we keep.
    async with client.stream("GET", url, timeout=timeout) as resp:
        return resp.status_code


async def probe(client: httpx.AsyncClient, url: str, timeout: float) -> ProbeResult:
    """
    One GET against url, reduced to a status code. Never raises for network
    trouble and never retries; the next tick is the retry.
    """
    t0 = time.monotonic()
    try:
        status = await asyncio.wait_for(_status(client, url, timeout), timeout=timeout)
    # UnicodeError: hosts that fail IDNA encoding, e.g. "xn--.test"
    except (httpx.HTTPError, httpx.InvalidURL, UnicodeError, asyncio.TimeoutError) as exc:
        ms = int((time.monotonic() - t0) * 1000)
        error = str(exc) or type(exc).__name__
        log.warning("probe.failed", url=url, error=error, ms=ms)
        return ProbeResult(url=url, status_code=PROBE_FAILED, duration_ms=ms, error=error)

    ms = int((time.monotonic() - t0) * 1000)
    log.info("probe.ok", url=url, status=status, ms=ms)
    return ProbeResult(url=url, status_code=status, duration_ms=ms)
