"""Core entities for the Pulpit gateway.

- Device: a registered device identity (owned by the external device store)
- ExecutionRequest: a transient request to run a shortcut or webhook
- ExecutionOutcome: the result handed back to the caller
- ScheduledTask: a deferred action or notification awaiting a sweep
- NotificationPayload / NotificationAction: alert content fanned out to devices
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from pulpit.models.base import PulpitBaseModel
from pulpit.models.constants import (
    DEFAULT_EXECUTION_TIMEOUT_SECONDS,
    MAX_NOTIFICATION_ACTIONS,
    PUSH_ACCEPTED_OUTPUT,
)
from pulpit.models.enums import (
    DeliveryChannel,
    ExecutionStatus,
    ScheduledTaskStatus,
    ScheduledTaskType,
)
from pulpit.models.types import (
    CorrelationID,
    DeviceID,
    DeviceToken,
    RegistrationCredential,
    TaskID,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Device(PulpitBaseModel):
    """A registered device.

    The registration credential authenticates the device's socket; the push
    token addresses it through APNs. The gateway only ever changes
    ``last_seen_at`` and ``is_automation_server``.

    Example:
        >>> device = Device(
        ...     id="dev-1",
        ...     name="Living Room iPad",
        ...     push_token="a1b2c3",
        ...     registration_credential="secret",
        ... )
        >>> device.is_automation_server
        False
    """

    id: DeviceID = Field(..., min_length=1, description="Opaque stable device id")
    name: str = Field(..., description="Display name")
    platform: str = Field(default="ios", description="Device platform")
    push_token: DeviceToken = Field(..., description="APNs device token")
    registration_credential: RegistrationCredential = Field(
        ..., repr=False, description="Secret presented in the socket auth frame"
    )
    is_automation_server: bool = Field(
        default=False, description="Eligible to receive and execute remote commands"
    )
    last_seen_at: datetime | None = Field(default=None, description="Last contact time (UTC)")
    created_at: datetime = Field(default_factory=_utcnow)


class ExecutionRequest(PulpitBaseModel):
    """A request to run a named shortcut on a device, or call a webhook.

    ``timeout_seconds`` is trusted as given; callers clamp it first.
    """

    shortcut_name: str | None = Field(default=None, description="Shortcut to run on the device")
    target_device_id: DeviceID | None = Field(
        default=None, description="Explicit target; None picks an automation server"
    )
    webhook_url: str | None = Field(default=None, description="External endpoint to call instead")
    input: str | None = Field(default=None, description="Optional shortcut input")
    timeout_seconds: float = Field(default=DEFAULT_EXECUTION_TIMEOUT_SECONDS, gt=0)

    @model_validator(mode="after")
    def _require_target_action(self) -> ExecutionRequest:
        if not self.shortcut_name and not self.webhook_url:
            raise ValueError("Either shortcut_name or webhook_url must be provided")
        return self


class ExecutionOutcome(PulpitBaseModel):
    """Result of an execution, whichever channel delivered it."""

    status: ExecutionStatus
    channel: DeliveryChannel
    execution_id: CorrelationID | None = None
    success: bool = False
    output: str | None = None
    error: str | None = None

    @classmethod
    def from_result(
        cls,
        execution_id: CorrelationID,
        success: bool,
        output: str | None = None,
        error: str | None = None,
    ) -> ExecutionOutcome:
        """Build the outcome for a result reported by a device over its socket."""
        return cls(
            status=ExecutionStatus.SUCCEEDED if success else ExecutionStatus.FAILED,
            channel=DeliveryChannel.SOCKET,
            execution_id=execution_id,
            success=success,
            output=output,
            error=error,
        )

    @classmethod
    def timed_out(cls, execution_id: CorrelationID, timeout_seconds: float) -> ExecutionOutcome:
        return cls(
            status=ExecutionStatus.TIMED_OUT,
            channel=DeliveryChannel.SOCKET,
            execution_id=execution_id,
            success=False,
            error=f"Execution timed out after {timeout_seconds:g}s",
        )

    @classmethod
    def accepted(cls, execution_id: CorrelationID) -> ExecutionOutcome:
        """Push fallback: delivery was attempted, the action result is unknowable."""
        return cls(
            status=ExecutionStatus.ACCEPTED,
            channel=DeliveryChannel.PUSH,
            execution_id=execution_id,
            success=True,
            output=PUSH_ACCEPTED_OUTPUT,
        )

    @classmethod
    def failed(
        cls,
        channel: DeliveryChannel,
        error: str,
        execution_id: CorrelationID | None = None,
        output: str | None = None,
    ) -> ExecutionOutcome:
        return cls(
            status=ExecutionStatus.FAILED,
            channel=channel,
            execution_id=execution_id,
            success=False,
            output=output,
            error=error,
        )

    @property
    def is_confirmed(self) -> bool:
        """True when the outcome reflects the remote action, not just delivery."""
        return self.status in (ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED)

    def to_response(self) -> dict[str, Any]:
        """Response body in the ``{success, output?, error?}`` shape API clients expect."""
        return self.model_dump(mode="json", exclude_none=True)


class ScheduledTask(PulpitBaseModel):
    """A deferred action or notification.

    ``reference`` carries what the sweep needs to run the task: the
    ExecutionRequest fields for actions, the notification payload and target
    ids for notifications.
    """

    id: TaskID
    type: ScheduledTaskType
    reference: dict[str, Any] = Field(default_factory=dict)
    execute_at: datetime
    status: ScheduledTaskStatus = ScheduledTaskStatus.PENDING
    result: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    def is_due(self, now: datetime) -> bool:
        return self.status is ScheduledTaskStatus.PENDING and self.execute_at <= now


class UrlBackgroundOptions(PulpitBaseModel):
    """HTTP request the device makes in the background when a URL action is tapped."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    http_method: Literal["GET", "POST", "PUT", "DELETE"] | None = None
    http_content_type: str | None = None
    http_body: str | None = None


class NotificationAction(PulpitBaseModel):
    """A button or tap action attached to a notification."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    name: str
    input: str | None = None
    keep_notification: bool | None = None
    shortcut: str | None = None
    homekit: str | None = None
    run_on_server: bool | None = None
    url: str | None = None
    url_background_options: UrlBackgroundOptions | None = None


class NotificationPayload(PulpitBaseModel):
    """Alert content plus delivery options (targets, delay, schedule)."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: str | None = None
    title: str | None = None
    text: str | None = None
    sound: str | None = None
    image: str | None = None
    image_data: str | None = Field(default=None, description="Base64 inline image")
    input: str | None = None
    thread_id: str | None = None
    is_time_sensitive: bool = False
    devices: list[str] | None = Field(default=None, description="Target device names")
    delay: float | None = Field(default=None, description="Seconds to wait before sending")
    schedule_timestamp: float | None = Field(
        default=None, description="Unix time to send at; ignored if already past"
    )
    default_action: NotificationAction | None = None
    actions: list[NotificationAction] | None = Field(
        default=None, max_length=MAX_NOTIFICATION_ACTIONS
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "Device",
    "ExecutionOutcome",
    "ExecutionRequest",
    "NotificationAction",
    "NotificationPayload",
    "ScheduledTask",
    "UrlBackgroundOptions",
]
