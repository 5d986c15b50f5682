"""Typed task and callback stores over a ``KeyValueStore``.

Keys used (below the backend's namespace):
    ``task:{task_id}``: PublishTask JSON
    ``callback:{callback_id}``: CallbackRecord JSON awaiting delivery
    ``callback:failed:{callback_id}``: Permanently failed CallbackRecord JSON
    ``callback:task:{task_id}:{stage}``: Callback id and status for a task's queued/final stage
"""

from __future__ import annotations

import json
import logging
from typing import NamedTuple

import pydantic

from src.core.kvstore import KeyValueStore
from src.publishing.models import CallbackRecord, CallbackStage, CallbackStatus, PublishTask

logger = logging.getLogger(__name__)

TASK_PREFIX = "task"
CALLBACK_PREFIX = "callback"
FAILED_CALLBACK_PREFIX = "callback:failed"
CALLBACK_INDEX_PREFIX = "callback:task"


class CallbackIndexEntry(NamedTuple):
    """What the per-task index remembers about a stage's callback."""

    callback_id: str
    status: CallbackStatus
    submitted_by: str | None = None


class TaskStore:
    """Time-limited storage for pending and in-flight publish tasks."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def save(self, task: PublishTask, ttl_seconds: int) -> None:
        await self._kv.set(f"{TASK_PREFIX}:{task.task_id}", task.model_dump_json(), ttl_seconds)

    async def load(self, task_id: str) -> PublishTask | None:
        raw = await self._kv.get(f"{TASK_PREFIX}:{task_id}")
        if raw is None:
            return None
        try:
            return PublishTask.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.error("Discarding unreadable task record %s", task_id)
            return None

    async def delete(self, task_id: str) -> bool:
        return await self._kv.delete(f"{TASK_PREFIX}:{task_id}")


class CallbackStore:
    """Time-limited storage for callbacks, their dead letters and the per-task index."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    @staticmethod
    def _parse(raw: str | None, key: str) -> CallbackRecord | None:
        if raw is None:
            return None
        try:
            return CallbackRecord.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.error("Discarding unreadable callback record %s", key)
            return None

    async def save(self, record: CallbackRecord, ttl_seconds: int) -> None:
        await self._kv.set(f"{CALLBACK_PREFIX}:{record.callback_id}", record.model_dump_json(), ttl_seconds)

    async def load(self, callback_id: str) -> CallbackRecord | None:
        key = f"{CALLBACK_PREFIX}:{callback_id}"
        return self._parse(await self._kv.get(key), key)

    async def delete(self, callback_id: str) -> bool:
        return await self._kv.delete(f"{CALLBACK_PREFIX}:{callback_id}")

    async def save_failed(self, record: CallbackRecord, ttl_seconds: int) -> None:
        await self._kv.set(f"{FAILED_CALLBACK_PREFIX}:{record.callback_id}", record.model_dump_json(), ttl_seconds)

    async def load_failed(self, callback_id: str) -> CallbackRecord | None:
        key = f"{FAILED_CALLBACK_PREFIX}:{callback_id}"
        return self._parse(await self._kv.get(key), key)

    async def delete_failed(self, callback_id: str) -> bool:
        return await self._kv.delete(f"{FAILED_CALLBACK_PREFIX}:{callback_id}")

    async def index(self, record: CallbackRecord, ttl_seconds: int) -> None:
        """Point the task's stage slot at this callback."""
        entry = json.dumps(
            {"callback_id": record.callback_id, "status": str(record.status), "submitted_by": record.submitted_by}
        )
        await self._kv.set(f"{CALLBACK_INDEX_PREFIX}:{record.task_id}:{record.stage}", entry, ttl_seconds)

    async def indexed(self, task_id: str, stage: CallbackStage) -> CallbackIndexEntry | None:
        """Return the index entry for a task's stage slot."""
        raw = await self._kv.get(f"{CALLBACK_INDEX_PREFIX}:{task_id}:{stage}")
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            return CallbackIndexEntry(entry["callback_id"], CallbackStatus(entry["status"]), entry.get("submitted_by"))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.error("Discarding unreadable callback index for task %s", task_id)
            return None
