"""SQLite-backed ScheduledTaskStore (persistent, file-based)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from pulpit.errors import InvalidTransitionError, ScheduledTaskNotFoundError
from pulpit.models.entities import ScheduledTask
from pulpit.models.enums import ScheduledTaskStatus, ScheduledTaskType
from pulpit.models.types import TaskID
from pulpit.scheduling.store import new_scheduled_task

DEFAULT_DB_PATH = "pulpit.db"
SCHEDULED_TASKS_TABLE = "scheduled_tasks"

# Seconds a connection waits on a locked database before failing
BUSY_TIMEOUT_SECONDS = 5.0

_COLUMNS = "id, type, reference, execute_at, status, result, created_at"


def _to_utc_text(value: datetime) -> str:
    """ISO text in UTC so that string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _task_to_row(task: ScheduledTask) -> tuple[str, str, str, str, str, str | None, str]:
    return (
        task.id,
        task.type.value,
        json.dumps(task.reference),
        _to_utc_text(task.execute_at),
        task.status.value,
        task.result,
        _to_utc_text(task.created_at),
    )


def _row_to_task(row: tuple[Any, ...]) -> ScheduledTask:
    id_, type_, reference_json, execute_at, status, result, created_at = row
    return ScheduledTask(
        id=id_,
        type=ScheduledTaskType(type_),
        reference=json.loads(reference_json),
        execute_at=datetime.fromisoformat(execute_at),
        status=ScheduledTaskStatus(status),
        result=result,
        created_at=datetime.fromisoformat(created_at),
    )


class SQLiteScheduledTaskStore:
    """ScheduledTaskStore persisted in SQLite via aiosqlite.

    Each operation opens its own connection. Claims and cancels are single
    conditional UPDATEs (``WHERE status = 'pending'``), so concurrent sweeps
    in one or several processes never claim the same task twice.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._initialized = False

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self._db_path, timeout=BUSY_TIMEOUT_SECONDS)

    async def _ensure_table(self, conn: aiosqlite.Connection) -> None:
        if self._initialized:
            return
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {SCHEDULED_TASKS_TABLE} (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                reference TEXT NOT NULL,
                execute_at TEXT NOT NULL,
                status TEXT NOT NULL,
                result TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        await conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{SCHEDULED_TASKS_TABLE}_due
            ON {SCHEDULED_TASKS_TABLE} (status, execute_at)
            """
        )
        await conn.commit()
        self._initialized = True

    async def create(
        self, task_type: ScheduledTaskType, reference: dict[str, Any], execute_at: datetime
    ) -> ScheduledTask:
        task = new_scheduled_task(task_type, reference, execute_at)
        async with self._connect() as conn:
            await self._ensure_table(conn)
            await conn.execute(
                f"INSERT INTO {SCHEDULED_TASKS_TABLE} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                _task_to_row(task),
            )
            await conn.commit()
        return task

    async def get(self, task_id: TaskID) -> ScheduledTask | None:
        async with self._connect() as conn:
            await self._ensure_table(conn)
            return await self._fetch(conn, task_id)

    async def claim_due(self, now: datetime) -> list[ScheduledTask]:
        claimed: list[ScheduledTask] = []
        async with self._connect() as conn:
            await self._ensure_table(conn)
            cursor = await conn.execute(
                f"""
                SELECT id FROM {SCHEDULED_TASKS_TABLE}
                WHERE status = ? AND execute_at <= ?
                ORDER BY execute_at ASC
                """,
                (ScheduledTaskStatus.PENDING.value, _to_utc_text(now)),
            )
            due_ids = [row[0] for row in await cursor.fetchall()]
            for task_id in due_ids:
                cursor = await conn.execute(
                    f"UPDATE {SCHEDULED_TASKS_TABLE} SET status = ? WHERE id = ? AND status = ?",
                    (
                        ScheduledTaskStatus.EXECUTING.value,
                        task_id,
                        ScheduledTaskStatus.PENDING.value,
                    ),
                )
                await conn.commit()
                if cursor.rowcount == 1:
                    task = await self._fetch(conn, task_id)
                    if task is not None:
                        claimed.append(task)
        return claimed

    async def complete(self, task_id: TaskID, result: str | None = None) -> ScheduledTask:
        return await self._finish(task_id, ScheduledTaskStatus.COMPLETED, result)

    async def fail(self, task_id: TaskID, error: str) -> ScheduledTask:
        return await self._finish(task_id, ScheduledTaskStatus.FAILED, error)

    async def cancel(self, task_id: TaskID) -> bool:
        async with self._connect() as conn:
            await self._ensure_table(conn)
            cursor = await conn.execute(
                f"UPDATE {SCHEDULED_TASKS_TABLE} SET status = ? WHERE id = ? AND status = ?",
                (
                    ScheduledTaskStatus.CANCELLED.value,
                    task_id,
                    ScheduledTaskStatus.PENDING.value,
                ),
            )
            await conn.commit()
            return cursor.rowcount == 1

    async def _finish(
        self, task_id: TaskID, status: ScheduledTaskStatus, result: str | None
    ) -> ScheduledTask:
        async with self._connect() as conn:
            await self._ensure_table(conn)
            cursor = await conn.execute(
                f"""
                UPDATE {SCHEDULED_TASKS_TABLE} SET status = ?, result = COALESCE(?, result)
                WHERE id = ? AND status = ?
                """,
                (status.value, result, task_id, ScheduledTaskStatus.EXECUTING.value),
            )
            await conn.commit()
            task = await self._fetch(conn, task_id)
        if task is None:
            raise ScheduledTaskNotFoundError(task_id)
        if cursor.rowcount != 1:
            raise InvalidTransitionError(
                from_state=task.status.value,
                to_state=status.value,
                details={"task_id": task_id},
            )
        return task

    async def _fetch(self, conn: aiosqlite.Connection, task_id: TaskID) -> ScheduledTask | None:
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM {SCHEDULED_TASKS_TABLE} WHERE id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        return _row_to_task(tuple(row)) if row is not None else None


__all__ = ["SQLiteScheduledTaskStore"]
