"""Scheduled task storage.

A store holds deferred actions and notifications. The only contended
transition is the move out of PENDING: ``claim_due`` (pending -> executing)
and ``cancel`` (pending -> cancelled) are conditional on the task still being
pending, so a task is either run once or cancelled, never both.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pulpit.errors import InvalidTransitionError, ScheduledTaskNotFoundError
from pulpit.models.entities import ScheduledTask
from pulpit.models.enums import ScheduledTaskStatus, ScheduledTaskType
from pulpit.models.ids import generate_id
from pulpit.models.types import TaskID

VALID_TASK_TRANSITIONS: dict[ScheduledTaskStatus, set[ScheduledTaskStatus]] = {
    ScheduledTaskStatus.PENDING: {ScheduledTaskStatus.EXECUTING, ScheduledTaskStatus.CANCELLED},
    ScheduledTaskStatus.EXECUTING: {ScheduledTaskStatus.COMPLETED, ScheduledTaskStatus.FAILED},
    ScheduledTaskStatus.COMPLETED: set(),
    ScheduledTaskStatus.FAILED: set(),
    ScheduledTaskStatus.CANCELLED: set(),
}


def new_scheduled_task(
    task_type: ScheduledTaskType, reference: dict[str, Any], execute_at: datetime
) -> ScheduledTask:
    return ScheduledTask(
        id=generate_id(),
        type=task_type,
        reference=reference,
        execute_at=execute_at,
    )


@runtime_checkable
class ScheduledTaskStore(Protocol):
    """Persistence for scheduled tasks."""

    async def create(
        self, task_type: ScheduledTaskType, reference: dict[str, Any], execute_at: datetime
    ) -> ScheduledTask:
        ...

    async def get(self, task_id: TaskID) -> ScheduledTask | None:
        ...

    async def claim_due(self, now: datetime) -> list[ScheduledTask]:
        """Atomically move every due pending task to EXECUTING and return them."""
        ...

    async def complete(self, task_id: TaskID, result: str | None = None) -> ScheduledTask:
        ...

    async def fail(self, task_id: TaskID, error: str) -> ScheduledTask:
        ...

    async def cancel(self, task_id: TaskID) -> bool:
        """Cancel a pending task. Returns False if it is missing or already claimed."""
        ...


class InMemoryScheduledTaskStore:
    """In-memory ScheduledTaskStore.

    Thread-safe using RLock; claims and cancels are decided under the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[TaskID, ScheduledTask] = {}

    async def create(
        self, task_type: ScheduledTaskType, reference: dict[str, Any], execute_at: datetime
    ) -> ScheduledTask:
        task = new_scheduled_task(task_type, reference, execute_at)
        with self._lock:
            self._tasks[task.id] = task
        return task

    async def get(self, task_id: TaskID) -> ScheduledTask | None:
        with self._lock:
            return self._tasks.get(task_id)

    async def claim_due(self, now: datetime) -> list[ScheduledTask]:
        with self._lock:
            due = sorted(
                (t for t in self._tasks.values() if t.is_due(now)),
                key=lambda t: t.execute_at,
            )
            claimed = [self._set_status(t.id, ScheduledTaskStatus.EXECUTING) for t in due]
        return claimed

    async def complete(self, task_id: TaskID, result: str | None = None) -> ScheduledTask:
        with self._lock:
            return self._set_status(task_id, ScheduledTaskStatus.COMPLETED, result)

    async def fail(self, task_id: TaskID, error: str) -> ScheduledTask:
        with self._lock:
            return self._set_status(task_id, ScheduledTaskStatus.FAILED, error)

    async def cancel(self, task_id: TaskID) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status is not ScheduledTaskStatus.PENDING:
                return False
            self._set_status(task_id, ScheduledTaskStatus.CANCELLED)
            return True

    def _set_status(
        self, task_id: TaskID, status: ScheduledTaskStatus, result: str | None = None
    ) -> ScheduledTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise ScheduledTaskNotFoundError(task_id)
        if status not in VALID_TASK_TRANSITIONS[task.status]:
            raise InvalidTransitionError(
                from_state=task.status.value,
                to_state=status.value,
                details={"task_id": task_id},
            )
        update: dict[str, Any] = {"status": status}
        if result is not None:
            update["result"] = result
        updated = task.model_copy(update=update)
        self._tasks[task_id] = updated
        return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)


__all__ = [
    "InMemoryScheduledTaskStore",
    "ScheduledTaskStore",
    "VALID_TASK_TRANSITIONS",
    "new_scheduled_task",
]
