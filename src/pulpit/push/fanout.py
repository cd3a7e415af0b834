"""Notification fan-out.

Sends one notification to many devices: a visible APNs alert per device,
plus a ``notification`` frame to each target that holds a live socket so an
open app can show it in real time. Delayed or future-dated notifications are
stored as scheduled tasks and delivered later by the scheduler.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from pulpit.devices.directory import DeviceDirectory
from pulpit.errors import PushDeliveryError
from pulpit.models.entities import Device, NotificationPayload
from pulpit.models.enums import ScheduledTaskType
from pulpit.models.ids import generate_id
from pulpit.models.messages import NotificationMessage
from pulpit.models.types import DeviceID, TaskID
from pulpit.observability.logging import get_logger
from pulpit.push.dispatcher import PushDispatcher
from pulpit.scheduling.store import ScheduledTaskStore
from pulpit.transport.protocol import DeviceProtocol

logger = get_logger(__name__)


@dataclass(frozen=True)
class FanoutResult:
    """What happened to one notification."""

    notification_id: str
    status: str
    targets: list[DeviceID] = field(default_factory=list)
    sent: int = 0
    failed: int = 0
    live_delivered: int = 0
    task_id: TaskID | None = None
    execute_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.notification_id,
            "status": self.status,
            "targets": list(self.targets),
            "sent": self.sent,
            "failed": self.failed,
            "liveDelivered": self.live_delivered,
        }
        if self.task_id is not None:
            data["taskId"] = self.task_id
        if self.execute_at is not None:
            data["executeAt"] = self.execute_at.isoformat()
        return data


class NotificationFanout:
    """Delivers notifications to a set of devices.

    Args:
        directory: Device lookup for target resolution
        protocol: Device protocol used for in-app delivery to live sockets
        push: Optional push dispatcher for APNs alerts
        task_store: Optional store for delayed notifications
        now: Wall clock (UTC), injectable for tests
    """

    def __init__(
        self,
        directory: DeviceDirectory,
        protocol: DeviceProtocol,
        push: PushDispatcher | None = None,
        task_store: ScheduledTaskStore | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._directory = directory
        self._protocol = protocol
        self._push = push
        self._task_store = task_store
        self._now = now

    def resolve_targets(self, device_names: list[str] | None) -> list[Device]:
        """Devices matching ``device_names``, or every device when none are given."""
        if device_names:
            return self._directory.find_by_names(device_names)
        return self._directory.list_all()

    async def deliver(self, payload: NotificationPayload) -> FanoutResult:
        """Send ``payload`` now, or schedule it if it carries a delay or future timestamp."""
        notification_id = payload.id or generate_id()
        targets = self.resolve_targets(payload.devices)
        target_ids = [d.id for d in targets]

        execute_at = self._scheduled_time(payload)
        if execute_at is not None:
            return await self._schedule(notification_id, payload, target_ids, execute_at)

        return await self._send(notification_id, payload, targets)

    async def deliver_scheduled(self, reference: dict[str, Any]) -> FanoutResult:
        """Deliver a notification previously stored by ``deliver``."""
        payload = NotificationPayload.model_validate(reference.get("payload", {}))
        device_ids = reference.get("device_ids", [])
        targets = [d for d in (self._directory.find_by_id(i) for i in device_ids) if d]
        notification_id = reference.get("notification_id") or payload.id or generate_id()
        return await self._send(notification_id, payload, targets)

    def _scheduled_time(self, payload: NotificationPayload) -> datetime | None:
        now = self._now()
        if payload.delay is not None and payload.delay > 0:
            return now + timedelta(seconds=payload.delay)
        if payload.schedule_timestamp is not None:
            at = datetime.fromtimestamp(payload.schedule_timestamp, tz=timezone.utc)
            if at > now:
                return at
        return None

    async def _schedule(
        self,
        notification_id: str,
        payload: NotificationPayload,
        target_ids: list[DeviceID],
        execute_at: datetime,
    ) -> FanoutResult:
        if self._task_store is None:
            raise RuntimeError("Scheduling requires a task store")
        wire = payload.model_copy(update={"delay": None, "schedule_timestamp": None}).to_wire()
        task = await self._task_store.create(
            ScheduledTaskType.NOTIFICATION,
            {"notification_id": notification_id, "payload": wire, "device_ids": target_ids},
            execute_at,
        )
        logger.info(
            "pulpit.notification.scheduled",
            notification_id=notification_id,
            task_id=task.id,
            execute_at=execute_at.isoformat(),
            targets=len(target_ids),
        )
        return FanoutResult(
            notification_id=notification_id,
            status="scheduled",
            targets=target_ids,
            task_id=task.id,
            execute_at=execute_at,
        )

    async def _send(
        self, notification_id: str, payload: NotificationPayload, targets: list[Device]
    ) -> FanoutResult:
        start = time.monotonic()
        sent = 0
        failed = 0
        if self._push is not None:
            metadata = _alert_metadata(notification_id, payload)
            for device in targets:
                try:
                    await self._push.send_alert(
                        device.push_token,
                        payload.title,
                        payload.text,
                        metadata,
                        sound=payload.sound,
                        thread_id=payload.thread_id,
                        is_time_sensitive=payload.is_time_sensitive,
                        image=payload.image,
                    )
                except PushDeliveryError as e:
                    failed += 1
                    logger.error(
                        "pulpit.notification.push_failed",
                        notification_id=notification_id,
                        device_id=device.id,
                        status_code=e.status_code,
                        reason=e.reason,
                    )
                else:
                    sent += 1

        live_delivered = await self._protocol.broadcast(
            [d.id for d in targets], NotificationMessage(payload=payload.to_wire())
        )

        if failed == 0:
            status = "sent"
        elif sent or live_delivered:
            status = "partial"
        else:
            status = "failed"
        logger.info(
            "pulpit.notification.sent",
            notification_id=notification_id,
            status=status,
            sent=sent,
            failed=failed,
            live_delivered=len(live_delivered),
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return FanoutResult(
            notification_id=notification_id,
            status=status,
            targets=[d.id for d in targets],
            sent=sent,
            failed=failed,
            live_delivered=len(live_delivered),
        )


def _alert_metadata(notification_id: str, payload: NotificationPayload) -> dict[str, Any]:
    wire = payload.to_wire()
    metadata: dict[str, Any] = {"notificationId": notification_id}
    for key in ("actions", "defaultAction", "input", "threadId", "imageData"):
        if key in wire:
            metadata[key] = wire[key]
    return metadata


__all__ = ["FanoutResult", "NotificationFanout"]
