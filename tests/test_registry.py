from datetime import timedelta

from renderhub.models import TaskSource
from renderhub.registry import TaskRegistry

SOURCE = TaskSource(audio_url="https://media.example.com/a.mp3", language="en", max_parallel=10)


def test_create_and_get():
    registry = TaskRegistry(retention_seconds=3600)

    task_id = registry.create(SOURCE)
    record = registry.get(task_id)

    assert record.id == task_id
    assert record.status == "pending"
    assert record.progress == 0
    assert record.source == SOURCE
    assert record.result is None and record.error is None


def test_get_unknown_returns_none():
    assert TaskRegistry().get("missing") is None


def test_update_merges_and_refreshes_timestamp():
    registry = TaskRegistry()
    task_id = registry.create(SOURCE)
    before = registry.get(task_id)

    registry.update(task_id, status="downloading", progress=5, message="Downloading audio")
    after = registry.get(task_id)

    assert after.status == "downloading"
    assert after.progress == 5
    assert after.message == "Downloading audio"
    assert after.source == before.source
    assert after.created_at == before.created_at
    assert after.updated_at >= before.updated_at
    assert before.status == "pending"


def test_progress_never_goes_backwards():
    registry = TaskRegistry()
    task_id = registry.create(SOURCE)

    registry.update(task_id, progress=40)
    registry.update(task_id, progress=30, message="late batch")

    assert registry.get(task_id).progress == 40
    assert registry.get(task_id).message == "late batch"


def test_update_unknown_task_is_dropped():
    registry = TaskRegistry()

    assert registry.update("missing", progress=10) is None
    assert len(registry) == 0


def test_sweep_evicts_records_past_retention():
    registry = TaskRegistry(retention_seconds=3600)
    old_id = registry.create(SOURCE)
    created = registry.get(old_id).created_at

    assert registry.sweep(now=created + timedelta(minutes=59)) == 0
    assert registry.sweep(now=created + timedelta(minutes=61)) == 1
    assert registry.get(old_id) is None


def test_sweep_keeps_fresh_records():
    registry = TaskRegistry(retention_seconds=3600)
    task_id = registry.create(SOURCE)

    registry.sweep()

    assert task_id in registry


def test_terminal_records_are_not_updated():
    registry = TaskRegistry()
    task_id = registry.create(SOURCE)
    registry.update(task_id, status="failed", error="boom", message="boom")

    registry.update(task_id, status="transcribing", progress=50)

    assert registry.get(task_id).status == "failed"
    assert registry.get(task_id).progress == 0
