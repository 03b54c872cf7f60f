"""
Streaming audio download with bounded retries.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from renderhub.errors import FetchError, TransientFetchError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


async def _stream_once(client: httpx.AsyncClient, url: str, max_bytes: int | None) -> bytes:
    async with client.stream("GET", url) as resp:
        if not resp.is_success:
            raise FetchError(f"Download failed with HTTP {resp.status_code} for {url}", resp.status_code)
        buf = bytearray()
        async for piece in resp.aiter_bytes():
            buf.extend(piece)
            if max_bytes is not None and len(buf) > max_bytes:
                raise FetchError(f"Download exceeds {max_bytes} bytes")
        return bytes(buf)


async def _attempt(client: httpx.AsyncClient, url: str, timeout_seconds: float,
                   max_bytes: int | None) -> bytes:
    try:
        return await asyncio.wait_for(_stream_once(client, url, max_bytes), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise TransientFetchError(f"Download timed out after {timeout_seconds:g}s") from exc
    except _TRANSIENT_ERRORS as exc:
        raise TransientFetchError(f"{type(exc).__name__}: {exc}") from exc


async def fetch_bytes(url: str, *, timeout_seconds: float, max_attempts: int,
                      retry_delay_seconds: float, max_bytes: int | None = None,
                      client: httpx.AsyncClient | None = None) -> bytes:
    """
    Download ``url`` into memory.
    Timeouts and dropped connections are retried with a fixed delay; any
    other failure, including a non-2xx status, is raised straight away.
    """
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(timeout_seconds))
    attempts = max(1, max_attempts)
    try:
        for attempt in range(1, attempts + 1):
            try:
                data = await _attempt(client, url, timeout_seconds, max_bytes)
            except TransientFetchError as exc:
                if attempt >= attempts:
                    raise FetchError(
                        f"Download failed after {attempts} attempts: {exc.message}"
                    ) from exc
                logger.warning(
                    "Download of %s failed (%s), retrying in %.1fs (attempt %d/%d)",
                    url, exc.message, retry_delay_seconds, attempt, attempts,
                )
                await asyncio.sleep(retry_delay_seconds)
                continue
            logger.info("Downloaded %d bytes from %s", len(data), url)
            return data
    finally:
        if own_client:
            await client.aclose()
    raise FetchError(f"Download failed for {url}")
