from __future__ import annotations

import asyncio
import logging
import math
import tempfile
import time
from pathlib import Path
from urllib.parse import urlparse

from renderhub.chunking import assemble_transcript, plan_chunk_duration
from renderhub.config import DEFAULT_LANGUAGE, MAX_CHUNK_SECONDS, MIN_DURATION_SECONDS, settings
from renderhub.errors import StageFailure, SubmissionError
from renderhub.fetcher import fetch_bytes
from renderhub.media import probe_duration, split_audio
from renderhub.models import StageTimings, TaskResult, TaskSource, TranscriptionRequest
from renderhub.registry import TaskRegistry
from renderhub.transcription import Transcriber, clamp_parallel, transcribe_chunks

logger = logging.getLogger(__name__)

SPLIT_PROGRESS = (20, 30)
TRANSCRIBE_PROGRESS = (30, 90)


def validate_submission(request: TranscriptionRequest) -> TaskSource:
    url = (request.audio_url or "").strip()
    if not url:
        raise SubmissionError("audio_url is required")
    if urlparse(url).scheme not in ("http", "https"):
        raise SubmissionError("audio_url must be an http(s) URL")
    if request.chunk_duration_seconds is not None and request.chunk_duration_seconds <= 0:
        raise SubmissionError("chunk_duration_seconds must be positive")
    if request.max_parallel is not None and request.max_parallel <= 0:
        raise SubmissionError("max_parallel must be positive")
    if (request.expected_duration_seconds is not None
            and request.expected_duration_seconds < MIN_DURATION_SECONDS):
        raise SubmissionError(
            f"Audio is too short: {request.expected_duration_seconds:g}s, "
            f"minimum is {MIN_DURATION_SECONDS}s"
        )
    chunk_seconds = request.chunk_duration_seconds
    return TaskSource(
        audio_url=url,
        language=request.language or DEFAULT_LANGUAGE,
        chunk_duration_seconds=min(chunk_seconds, MAX_CHUNK_SECONDS) if chunk_seconds else None,
        max_parallel=clamp_parallel(request.max_parallel),
    )


def _scale(window: tuple[int, int], done: int, total: int) -> int:
    low, high = window
    if total <= 0:
        return high
    return low + round((high - low) * done / total)


async def _download(url: str) -> bytes:
    return await fetch_bytes(
        url,
        timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
        max_attempts=settings.FETCH_MAX_ATTEMPTS,
        retry_delay_seconds=settings.FETCH_RETRY_DELAY_SECONDS,
        max_bytes=settings.FETCH_MAX_BYTES,
    )


def _source_name(url: str) -> str:
    suffix = Path(urlparse(url).path).suffix.lower()
    if not suffix or len(suffix) > 6:
        suffix = ".audio"
    return f"source{suffix}"


async def run_pipeline(task_id: str, registry: TaskRegistry, client: Transcriber, work_dir: Path,
                       *, download=_download, probe=probe_duration, split=split_audio) -> TaskResult:
    record = registry.get(task_id)
    if record is None:
        raise StageFailure(f"Task {task_id} no longer exists")
    source = record.source
    timings = StageTimings()
    started = time.monotonic()

    registry.update(task_id, status="downloading", progress=5, message="Downloading audio")
    mark = time.monotonic()
    data = await download(source.audio_url)
    source_path = work_dir / _source_name(source.audio_url)
    await asyncio.to_thread(source_path.write_bytes, data)
    timings.download_seconds = round(time.monotonic() - mark, 3)
    registry.update(
        task_id, progress=10,
        message=f"Downloaded {len(data) / 1024 / 1024:.1f} MB, probing duration",
    )

    mark = time.monotonic()
    total_seconds = await probe(source_path)
    timings.probe_seconds = round(time.monotonic() - mark, 3)
    registry.update(task_id, progress=15, message=f"Audio is {total_seconds / 60:.1f} min long")
    if total_seconds < MIN_DURATION_SECONDS:
        raise StageFailure(
            f"Audio is too short: {total_seconds:.0f}s, minimum is {MIN_DURATION_SECONDS}s"
        )

    chunk_seconds = plan_chunk_duration(total_seconds, source.chunk_duration_seconds)
    registry.update(
        task_id, status="splitting", progress=SPLIT_PROGRESS[0],
        message=f"Splitting {total_seconds / 60:.1f} min of audio into {chunk_seconds}s chunks",
    )
    logger.info("Task %s: %.1fs audio, %ds chunks", task_id, total_seconds, chunk_seconds)

    async def split_progress(done: int, planned: int) -> None:
        registry.update(
            task_id, progress=_scale(SPLIT_PROGRESS, done, planned),
            message=f"Splitting audio: {done}/{planned} chunks",
        )

    mark = time.monotonic()
    chunks = await split(source_path, total_seconds, chunk_seconds, work_dir, on_progress=split_progress)
    timings.split_seconds = round(time.monotonic() - mark, 3)
    chunk_count = math.ceil(total_seconds / chunk_seconds)

    registry.update(
        task_id, status="transcribing", progress=TRANSCRIBE_PROGRESS[0],
        message=f"Transcribing {len(chunks)} chunks",
    )

    async def batch_progress(completed: int, total: int, succeeded: int) -> None:
        registry.update(
            task_id, progress=_scale(TRANSCRIBE_PROGRESS, completed, total),
            message=f"Transcribed {succeeded}/{total} chunks",
        )

    mark = time.monotonic()
    outcomes = await transcribe_chunks(
        chunks, source.language, source.max_parallel, client, on_batch=batch_progress
    )
    timings.transcribe_seconds = round(time.monotonic() - mark, 3)

    transcript = assemble_transcript(outcomes)
    timings.total_seconds = round(time.monotonic() - started, 3)
    return TaskResult(
        transcript=transcript.text,
        character_count=transcript.character_count,
        success_count=transcript.success_count,
        chunk_count=chunk_count,
        transcribed_chunks=len(chunks),
        failed_chunks=len(chunks) - transcript.success_count,
        duration_seconds=round(total_seconds, 3),
        chunk_duration_seconds=chunk_seconds,
        downloaded_bytes=len(data),
        timings=timings,
    )


async def process_task(task_id: str, registry: TaskRegistry, client: Transcriber, **stages) -> None:
    try:
        with tempfile.TemporaryDirectory(prefix=f"renderhub-{task_id}-") as tmp:
            result = await run_pipeline(task_id, registry, client, Path(tmp), **stages)
    except Exception as exc:
        logger.exception("Task %s failed", task_id)
        registry.update(task_id, status="failed", message=str(exc), error=str(exc) or type(exc).__name__)
        return
    registry.update(
        task_id, status="completed", progress=100, result=result,
        message=f"Done: {result.success_count}/{result.transcribed_chunks} chunks, "
                f"{result.character_count} characters",
    )
    logger.info("Task %s completed", task_id)
