"""Scheduled task runner.

Polls the task store, claims due tasks and runs them: actions through the
delivery router, notifications through the fan-out. Claiming is atomic in
the store, so several runners may share one store safely.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pulpit.errors import PulpitError
from pulpit.models.constants import SCHEDULER_POLL_INTERVAL_SECONDS
from pulpit.models.entities import ScheduledTask
from pulpit.models.enums import ScheduledTaskStatus, ScheduledTaskType
from pulpit.observability.logging import get_logger
from pulpit.observability.metrics import MetricsCollector, get_metrics
from pulpit.scheduling.store import ScheduledTaskStore

if TYPE_CHECKING:
    from pulpit.push.fanout import NotificationFanout
    from pulpit.routing.router import DeliveryRouter

logger = get_logger(__name__)


class ScheduledTaskRunner:
    """Runs due scheduled tasks.

    Args:
        store: Task store to claim from
        router: Executes action tasks
        fanout: Delivers notification tasks (optional)
        poll_interval: Seconds between sweeps in ``run``
        now: Wall clock (UTC), injectable for tests
        metrics: Metrics collector (defaults to the process-wide one)
    """

    def __init__(
        self,
        store: ScheduledTaskStore,
        router: DeliveryRouter,
        fanout: NotificationFanout | None = None,
        poll_interval: float = SCHEDULER_POLL_INTERVAL_SECONDS,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._store = store
        self._router = router
        self._fanout = fanout
        self._poll_interval = poll_interval
        self._now = now
        self._metrics = metrics or get_metrics()

    async def sweep(self) -> list[ScheduledTask]:
        """Claim every due task and run it. Returns the tasks in their final state."""
        claimed = await self._store.claim_due(self._now())
        finished: list[ScheduledTask] = []
        for task in claimed:
            finished.append(await self._run_task(task))
        return finished

    async def run(self) -> None:
        """Sweep every poll interval until cancelled."""
        logger.info("pulpit.scheduler.started", poll_interval=self._poll_interval)
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.exception("pulpit.scheduler.sweep_error", error=str(e))
            await asyncio.sleep(self._poll_interval)

    async def _run_task(self, task: ScheduledTask) -> ScheduledTask:
        try:
            result = await self._execute(task)
        except (PulpitError, ValueError) as e:
            return await self._fail(task, str(e))
        except Exception as e:
            logger.exception("pulpit.scheduler.task_crashed", task_id=task.id)
            return await self._fail(task, str(e) or type(e).__name__)

        completed = await self._store.complete(task.id, result)
        self._metrics.increment_counter(
            "pulpit_scheduled_tasks_total",
            {"type": task.type.value, "status": ScheduledTaskStatus.COMPLETED.value},
        )
        logger.info("pulpit.scheduler.task_completed", task_id=task.id, type=task.type.value)
        return completed

    async def _execute(self, task: ScheduledTask) -> str:
        if task.type is ScheduledTaskType.ACTION:
            outcome = await self._router.execute_now(task.reference)
            return json.dumps(outcome.to_response())
        if self._fanout is None:
            raise ValueError("Notification tasks require a notification fan-out")
        result = await self._fanout.deliver_scheduled(task.reference)
        return json.dumps(result.to_dict())

    async def _fail(self, task: ScheduledTask, error: str) -> ScheduledTask:
        logger.error(
            "pulpit.scheduler.task_failed",
            task_id=task.id,
            type=task.type.value,
            error=error,
        )
        self._metrics.increment_counter(
            "pulpit_scheduled_tasks_total",
            {"type": task.type.value, "status": ScheduledTaskStatus.FAILED.value},
        )
        return await self._store.fail(task.id, error)


__all__ = ["ScheduledTaskRunner"]
