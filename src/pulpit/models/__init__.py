"""Pulpit Models.

Pydantic models for device identities, execution requests and outcomes,
scheduled tasks, notification payloads and WebSocket frames.
"""

from pulpit.models.base import PulpitBaseModel, WireModel
from pulpit.models.constants import (
    AUTH_TIMEOUT_SECONDS,
    DEFAULT_EXECUTION_TIMEOUT_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    MAX_EXECUTION_TIMEOUT_SECONDS,
    MIN_EXECUTION_TIMEOUT_SECONDS,
)
from pulpit.models.entities import (
    Device,
    ExecutionOutcome,
    ExecutionRequest,
    NotificationAction,
    NotificationPayload,
    ScheduledTask,
    UrlBackgroundOptions,
)
from pulpit.models.enums import (
    ConnectionState,
    DeliveryChannel,
    ExecutionStatus,
    ScheduledTaskStatus,
    ScheduledTaskType,
)
from pulpit.models.ids import extract_timestamp, generate_id
from pulpit.models.types import CorrelationID, DeviceID, DeviceToken, TaskID

__all__ = [
    "AUTH_TIMEOUT_SECONDS",
    "ConnectionState",
    "CorrelationID",
    "DEFAULT_EXECUTION_TIMEOUT_SECONDS",
    "DeliveryChannel",
    "Device",
    "DeviceID",
    "DeviceToken",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionStatus",
    "HEARTBEAT_INTERVAL_SECONDS",
    "MAX_EXECUTION_TIMEOUT_SECONDS",
    "MIN_EXECUTION_TIMEOUT_SECONDS",
    "NotificationAction",
    "NotificationPayload",
    "PulpitBaseModel",
    "ScheduledTask",
    "ScheduledTaskStatus",
    "ScheduledTaskType",
    "TaskID",
    "UrlBackgroundOptions",
    "WireModel",
    "extract_timestamp",
    "generate_id",
]
