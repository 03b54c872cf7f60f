"""In-memory task store with age-based eviction.

Each task has exactly one writer, the pipeline run that owns it. Updates
build a complete new record and swap it in with a single assignment, so a
reader never sees a half-applied update.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from renderhub.config import settings
from renderhub.models import TERMINAL_STATUSES, TaskRecord, TaskSource

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskRegistry:
    def __init__(self, retention_seconds: float | None = None):
        self.retention = timedelta(
            seconds=retention_seconds if retention_seconds is not None else settings.TASK_RETENTION_SECONDS
        )
        self._tasks: dict[str, TaskRecord] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def create(self, source: TaskSource) -> str:
        task_id = uuid.uuid4().hex
        now = _utcnow()
        self._tasks[task_id] = TaskRecord(id=task_id, source=source, created_at=now, updated_at=now)
        logger.info("Created task %s for %s", task_id, source.audio_url)
        return task_id

    def get(self, task_id: str) -> TaskRecord | None:
        return self._tasks.get(task_id)

    def update(self, task_id: str, **fields: Any) -> TaskRecord | None:
        current = self._tasks.get(task_id)
        if current is None:
            logger.warning("Dropping update for unknown or evicted task %s", task_id)
            return None
        if current.status in TERMINAL_STATUSES:
            logger.warning("Ignoring update for task %s in terminal state %s", task_id, current.status)
            return current
        if "progress" in fields:
            fields["progress"] = max(current.progress, min(100, int(fields["progress"])))
        fields["updated_at"] = _utcnow()
        record = current.model_copy(update=fields)
        self._tasks[task_id] = record
        return record

    def sweep(self, now: datetime | None = None) -> int:
        cutoff = (now or _utcnow()) - self.retention
        expired = [tid for tid, rec in self._tasks.items() if rec.created_at < cutoff]
        for tid in expired:
            del self._tasks[tid]
        if expired:
            logger.info("Evicted %d expired task(s)", len(expired))
        return len(expired)

    async def run_sweeper(self, interval_seconds: float | None = None) -> None:
        interval = interval_seconds if interval_seconds is not None else settings.SWEEP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            self.sweep()
