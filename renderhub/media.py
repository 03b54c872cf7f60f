from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from renderhub.chunking import Chunk, chunk_windows
from renderhub.config import (
    CHUNK_BITRATE,
    CHUNK_FORMAT,
    CHUNK_SAMPLE_RATE,
    MAX_UPLOAD_BYTES,
    settings,
)
from renderhub.errors import ChunkFailure, StageFailure

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


async def _run(cmd: list[str], timeout: float) -> tuple[int, str, str]:
    proc = await asyncio.create_subprocess_exec(
        *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    finally:
        # timeout or cancellation: the child must not outlive the task
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
    return proc.returncode, out.decode("utf-8", "ignore"), err.decode("utf-8", "ignore")


async def probe_duration(path: Path) -> float:
    cmd = [
        settings.FFPROBE_BIN,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        code, out, err = await _run(cmd, timeout=60)
    except (OSError, asyncio.TimeoutError) as exc:
        raise StageFailure(f"ffprobe could not run: {exc}") from exc
    if code != 0:
        raise StageFailure(f"ffprobe failed: {err.strip()[:300] or 'unknown error'}")
    try:
        duration = float(out.strip())
    except ValueError:
        raise StageFailure(f"ffprobe returned no duration: {out.strip()[:100]!r}")
    if duration <= 0:
        raise StageFailure("Audio has no measurable duration")
    return duration


async def cut_chunk(source: Path, start_seconds: float, duration_seconds: float, output: Path) -> None:
    cmd = [
        settings.FFMPEG_BIN,
        "-nostdin", "-hide_banner", "-loglevel", "error",
        "-y",
        "-ss", f"{start_seconds:.3f}",
        "-t", f"{duration_seconds:.3f}",
        "-i", str(source),
        "-vn",
        "-ac", "1",
        "-ar", str(CHUNK_SAMPLE_RATE),
        "-b:a", CHUNK_BITRATE,
        "-f", CHUNK_FORMAT,
        str(output),
    ]
    code, _, err = await _run(cmd, timeout=settings.FFMPEG_TIMEOUT_SECONDS)
    if code != 0:
        raise RuntimeError(f"ffmpeg failed: {err.strip()[:300]}")
    if not output.exists() or output.stat().st_size == 0:
        raise RuntimeError("ffmpeg produced an empty file")


async def split_audio(source: Path, total_seconds: float, chunk_seconds: int, work_dir: Path,
                      *, on_progress: ProgressCallback | None = None,
                      cutter=cut_chunk) -> list[Chunk]:
    """
    Cut ``source`` into consecutive chunks of ``chunk_seconds``.

    A chunk that fails to cut, or comes out larger than the upload ceiling,
    is logged and left out; the rest of the list is still returned.
    """
    windows = chunk_windows(total_seconds, chunk_seconds)
    chunks_dir = work_dir / "chunks"
    chunks_dir.mkdir(parents=True, exist_ok=True)
    chunks: list[Chunk] = []

    for done, window in enumerate(windows, start=1):
        output = chunks_dir / f"chunk_{window.index:03d}.{CHUNK_FORMAT}"
        try:
            try:
                await cutter(source, window.start_seconds, window.duration_seconds, output)
                data = await asyncio.to_thread(output.read_bytes)
            except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
                raise ChunkFailure(window.index, f"cut failed: {exc}") from exc
            if len(data) > MAX_UPLOAD_BYTES:
                raise ChunkFailure(
                    window.index, f"{len(data)} bytes exceeds upload limit of {MAX_UPLOAD_BYTES}"
                )
        except ChunkFailure as exc:
            logger.warning("Skipping %s", exc)
        else:
            window.data = data
            chunks.append(window)
        if on_progress is not None:
            await on_progress(done, len(windows))

    logger.info("Split %s into %d/%d chunks", source.name, len(chunks), len(windows))
    return chunks
