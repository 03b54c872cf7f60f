"""
Transcription API client and the batched chunk executor.

Chunks are sent as base64 in a JSON body. Each batch of up to
``MAX_PARALLEL`` requests runs concurrently and the next batch starts only
once the whole batch has settled.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Awaitable, Callable, Protocol

import httpx

from renderhub.chunking import Chunk, ChunkOutcome
from renderhub.config import CHUNK_FORMAT, MAX_BASE64_CHARS, MAX_PARALLEL, settings
from renderhub.errors import ChunkFailure, TranscriptionError

logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, int, int], Awaitable[None]]


class Transcriber(Protocol):
    async def transcribe(self, audio_b64: str, language: str) -> str: ...


class TranscriptionClient:
    """Thin async client for the hosted speech-to-text endpoint."""

    def __init__(self, url: str | None = None, api_key: str | None = None,
                 model: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.url = url or settings.TRANSCRIBE_API_URL
        self.model = model or settings.TRANSCRIBE_MODEL
        key = api_key if api_key is not None else settings.TRANSCRIBE_API_KEY
        headers = {"Authorization": f"Bearer {key}"} if key else {}
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout or settings.TRANSCRIBE_TIMEOUT_SECONDS),
            transport=transport,
        )

    async def transcribe(self, audio_b64: str, language: str) -> str:
        if len(audio_b64) > MAX_BASE64_CHARS:
            raise TranscriptionError(
                f"Audio payload of {len(audio_b64)} chars exceeds the {MAX_BASE64_CHARS} limit"
            )
        payload = {
            "model": self.model,
            "audio": audio_b64,
            "format": CHUNK_FORMAT,
            "language": language,
        }
        try:
            resp = await self._client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc

        if not resp.is_success:
            raise TranscriptionError(
                f"Transcription API returned {resp.status_code}: {resp.text[:300]}"
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise TranscriptionError("Transcription API returned invalid JSON") from exc

        text = body.get("text") if isinstance(body, dict) else None
        if not isinstance(text, str):
            raise TranscriptionError("Transcription API response has no text field")
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


def clamp_parallel(requested: int | None) -> int:
    if not requested or requested < 1:
        return MAX_PARALLEL
    return min(requested, MAX_PARALLEL)


async def _transcribe_one(chunk: Chunk, language: str, client: Transcriber) -> ChunkOutcome:
    try:
        audio_b64 = base64.b64encode(chunk.data).decode("ascii")
        text = await client.transcribe(audio_b64, language)
    except Exception as exc:
        failure = ChunkFailure(chunk.index, str(exc))
        logger.warning("Transcription failed for %s", failure)
        return ChunkOutcome(index=chunk.index, text="", success=False)
    return ChunkOutcome(index=chunk.index, text=text, success=True)


async def transcribe_chunks(chunks: list[Chunk], language: str, max_parallel: int | None,
                            client: Transcriber, *,
                            on_batch: BatchCallback | None = None) -> list[ChunkOutcome]:
    batch_size = clamp_parallel(max_parallel)
    total = len(chunks)
    outcomes: list[ChunkOutcome] = []

    for offset in range(0, total, batch_size):
        batch = chunks[offset:offset + batch_size]
        results = await asyncio.gather(*(_transcribe_one(c, language, client) for c in batch))
        outcomes.extend(results)
        succeeded = sum(1 for o in outcomes if o.success)
        logger.info("Transcribed batch %d: %d/%d chunks ok so far",
                    offset // batch_size + 1, succeeded, len(outcomes))
        if on_batch is not None:
            await on_batch(len(outcomes), total, succeeded)

    return outcomes
