from __future__ import annotations

import math
from dataclasses import dataclass

from renderhub.config import (
    LONG_AUDIO_CHUNK_SECONDS,
    LONG_AUDIO_THRESHOLD_SECONDS,
    MAX_CHUNK_SECONDS,
    MIN_CHUNK_SECONDS,
    TARGET_CHUNK_COUNT,
)

CHUNK_SEPARATOR = "\n\n"


@dataclass
class Chunk:
    index: int
    start_seconds: float
    duration_seconds: float
    data: bytes = b""

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class ChunkOutcome:
    index: int
    text: str
    success: bool


@dataclass
class Transcript:
    text: str
    character_count: int
    success_count: int


def plan_chunk_duration(total_seconds: float, requested_seconds: int | None = None) -> int:
    """Pick the chunk length in seconds for an audio file of ``total_seconds``.

    Long recordings get a fixed chunk size. Shorter ones aim for
    ``TARGET_CHUNK_COUNT`` chunks, kept within the min/max bounds so every
    chunk stays under the upload ceiling. An explicit request wins but is
    still capped at the maximum.
    """
    if requested_seconds:
        return min(int(requested_seconds), MAX_CHUNK_SECONDS)
    if total_seconds >= LONG_AUDIO_THRESHOLD_SECONDS:
        return LONG_AUDIO_CHUNK_SECONDS
    target = math.ceil(total_seconds / TARGET_CHUNK_COUNT)
    return max(MIN_CHUNK_SECONDS, min(target, MAX_CHUNK_SECONDS))


def chunk_windows(total_seconds: float, chunk_seconds: float) -> list[Chunk]:
    if total_seconds <= 0 or chunk_seconds <= 0:
        return []
    count = math.ceil(total_seconds / chunk_seconds)
    windows: list[Chunk] = []
    for index in range(count):
        start = index * chunk_seconds
        end = min(start + chunk_seconds, total_seconds)
        if end <= start:
            break
        windows.append(Chunk(index=index, start_seconds=start, duration_seconds=end - start))
    return windows


def assemble_transcript(outcomes: list[ChunkOutcome]) -> Transcript:
    ordered = sorted(outcomes, key=lambda o: o.index)
    parts = [o.text.strip() for o in ordered if o.text and o.text.strip()]
    text = CHUNK_SEPARATOR.join(parts)
    return Transcript(
        text=text,
        character_count=len(text),
        success_count=sum(1 for o in ordered if o.success),
    )
