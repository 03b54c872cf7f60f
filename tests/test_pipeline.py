import asyncio
import base64
from functools import partial
from pathlib import Path

import pytest

from renderhub.errors import FetchError, SubmissionError
from renderhub.media import split_audio
from renderhub.models import TranscriptionRequest
from renderhub.pipeline import process_task, validate_submission
from renderhub.registry import TaskRegistry


def test_validate_rejects_short_expected_duration():
    with pytest.raises(SubmissionError, match="too short"):
        validate_submission(TranscriptionRequest(audio_url="https://x.test/a.mp3", expected_duration_seconds=60))


def test_validate_requires_http_url():
    with pytest.raises(SubmissionError):
        validate_submission(TranscriptionRequest())
    with pytest.raises(SubmissionError):
        validate_submission(TranscriptionRequest(audio_url="ftp://x.test/a.mp3"))


def test_validate_clamps_overrides():
    source = validate_submission(
        TranscriptionRequest.model_validate(
            {"audioUrl": " https://x.test/a.mp3 ", "chunkDurationSeconds": 5000, "maxParallel": 25}
        )
    )

    assert source.audio_url == "https://x.test/a.mp3"
    assert source.chunk_duration_seconds == 900
    assert source.max_parallel == 10
    assert source.language == "auto"


class RecordingRegistry(TaskRegistry):
    def __init__(self):
        super().__init__(retention_seconds=3600)
        self.history = {}

    def update(self, task_id, **fields):
        record = super().update(task_id, **fields)
        if record is not None:
            self.history.setdefault(task_id, []).append((record.status, record.progress))
        return record


class FakeTranscriber:
    def __init__(self, failing=()):
        self.failing = set(failing)

    async def transcribe(self, audio_b64, language):
        payload = base64.b64decode(audio_b64).decode()
        index = int(payload.rsplit("-", 1)[1])
        await asyncio.sleep(0)
        if index in self.failing:
            raise RuntimeError("upstream 500")
        return f" segment {index} "


def _stages(duration, work_dirs, cut_fails=False):
    async def download(url):
        return b"RIFF" + url.encode()

    async def probe(path):
        assert path.read_bytes().startswith(b"RIFF")
        return duration

    async def cutter(source, start, length, output):
        work_dirs.add(output.parent.parent)
        if cut_fails:
            raise RuntimeError("ffmpeg failed")
        output.write_bytes(f"{source.parent.name}-{int(output.stem.split('_')[1])}".encode())

    return {"download": download, "probe": probe, "split": partial(split_audio, cutter=cutter)}


def _submit(registry, url="https://media.example.com/talk.mp3", **extra):
    return registry.create(validate_submission(TranscriptionRequest(audio_url=url, **extra)))


def test_partial_transcription_failure_still_completes():
    registry = RecordingRegistry()
    work_dirs = set()
    task_id = _submit(registry, max_parallel=4)

    asyncio.run(process_task(task_id, registry, FakeTranscriber(failing={2, 5}), **_stages(1850, work_dirs)))
    record = registry.get(task_id)

    assert record.status == "completed"
    assert record.progress == 100
    assert record.error is None
    result = record.result
    assert result.success_count == 8
    assert result.chunk_count == 10
    assert result.transcribed_chunks == 10
    assert result.failed_chunks == 2
    assert result.chunk_duration_seconds == 185
    expected = "\n\n".join(f"segment {i}" for i in range(10) if i not in (2, 5))
    assert result.transcript == expected
    assert result.character_count == len(expected)
    statuses = [s for s, _ in registry.history[task_id]]
    assert statuses[0] == "downloading"
    assert statuses.index("splitting") < statuses.index("transcribing") < statuses.index("completed")
    for path in work_dirs:
        assert not Path(path).exists()


def test_short_audio_fails_task():
    registry = RecordingRegistry()
    task_id = _submit(registry)

    asyncio.run(process_task(task_id, registry, FakeTranscriber(), **_stages(120, set())))
    record = registry.get(task_id)

    assert record.status == "failed"
    assert "too short" in record.error
    assert record.result is None
    assert record.progress == 15


def test_download_failure_fails_task_with_message():
    registry = RecordingRegistry()
    task_id = _submit(registry)
    stages = _stages(1850, set())

    async def broken_download(url):
        raise FetchError("Download failed with HTTP 404 for " + url, 404)

    stages["download"] = broken_download
    asyncio.run(process_task(task_id, registry, FakeTranscriber(), **stages))
    record = registry.get(task_id)

    assert record.status == "failed"
    assert record.error == "Download failed with HTTP 404 for https://media.example.com/talk.mp3"
    assert record.message == record.error


def test_no_surviving_chunks_completes_with_empty_transcript():
    registry = RecordingRegistry()
    work_dirs = set()
    task_id = _submit(registry)

    asyncio.run(process_task(task_id, registry, FakeTranscriber(), **_stages(900, work_dirs, cut_fails=True)))
    record = registry.get(task_id)

    assert record.status == "completed"
    assert record.result.transcript == ""
    assert record.result.success_count == 0
    assert record.result.transcribed_chunks == 0
    assert record.result.chunk_count == 8


def test_concurrent_tasks_stay_isolated():
    registry = RecordingRegistry()
    work_dirs = set()
    first = _submit(registry, url="https://media.example.com/one.mp3")
    second = _submit(registry, url="https://media.example.com/two.mp3", max_parallel=2)

    async def run_both():
        await asyncio.gather(
            process_task(first, registry, FakeTranscriber(), **_stages(1850, work_dirs)),
            process_task(second, registry, FakeTranscriber(failing={0}), **_stages(3000, work_dirs)),
        )

    asyncio.run(run_both())

    assert len(work_dirs) == 2
    assert registry.get(first).result.success_count == 10
    assert registry.get(second).result.success_count == 9
    for task_id in (first, second):
        progress = [p for _, p in registry.history[task_id]]
        assert progress == sorted(progress)
        assert progress[-1] == 100
