"""Deferred actions and notifications.

Factory:
- create_task_store() builds a ScheduledTaskStore for the configured
  storage backend (memory or sqlite).
"""

from pulpit.config import PulpitSettings
from pulpit.scheduling.runner import ScheduledTaskRunner
from pulpit.scheduling.sqlite import SQLiteScheduledTaskStore
from pulpit.scheduling.store import (
    InMemoryScheduledTaskStore,
    ScheduledTaskStore,
    new_scheduled_task,
)


def create_task_store(settings: PulpitSettings) -> ScheduledTaskStore:
    """Create a ScheduledTaskStore from settings.

    Raises:
        ValueError: If the storage backend is not "memory" or "sqlite".
    """
    if settings.storage_backend == "memory":
        return InMemoryScheduledTaskStore()
    if settings.storage_backend == "sqlite":
        return SQLiteScheduledTaskStore(db_path=settings.storage_path)
    raise ValueError(
        f"Unknown storage backend {settings.storage_backend!r}. Use 'memory' or 'sqlite'."
    )


__all__ = [
    "InMemoryScheduledTaskStore",
    "SQLiteScheduledTaskStore",
    "ScheduledTaskRunner",
    "ScheduledTaskStore",
    "create_task_store",
    "new_scheduled_task",
]
