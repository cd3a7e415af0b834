"""Pulpit Error Taxonomy.

This module defines the error hierarchy for the device gateway, providing
structured error handling with specific error codes and context information.

Codes follow the ``pulpit:<area>/<reason>`` pattern so callers (HTTP layer,
scheduler, logs) can branch on the code without parsing messages.
"""

from __future__ import annotations

from typing import Any


class PulpitError(Exception):
    """Base exception for all Pulpit errors.

    Attributes:
        code: Error code following the pulpit:<area>/<reason> pattern
        message: Human-readable error message
        details: Optional additional error context
    """

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{code, message, details}`` dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidTransitionError(PulpitError):
    """Raised when a connection or scheduled task is moved to a state it cannot reach.

    Attributes:
        from_state: The current state
        to_state: The attempted target state
    """

    def __init__(
        self, from_state: str, to_state: str, details: dict[str, Any] | None = None
    ) -> None:
        message = f"Invalid transition from '{from_state}' to '{to_state}'"
        super().__init__(
            code="pulpit:protocol/invalid_state",
            message=message,
            details={"from_state": from_state, "to_state": to_state, **(details or {})},
        )
        self.from_state = from_state
        self.to_state = to_state


class DeviceNotFoundError(PulpitError):
    """Raised when a device id does not resolve to a registered device."""

    def __init__(self, device_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="pulpit:device/not_found",
            message=f"Device not found: {device_id}",
            details={"device_id": device_id, **(details or {})},
        )
        self.device_id = device_id


class NoAutomationDeviceError(PulpitError):
    """Raised when no target was given and no automation-capable device exists."""

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="pulpit:device/no_automation_server",
            message="No automation server device available",
            details=details or {},
        )


class DeviceUnreachableError(PulpitError):
    """Raised when a device has no live session and no push path is configured.

    This is a hard failure surfaced immediately; no retry happens inside the
    gateway.
    """

    def __init__(
        self, device_id: str, reason: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        message = (
            f"Cannot reach device {device_id}: "
            f"{reason or 'not connected via WebSocket and push is not configured'}"
        )
        super().__init__(
            code="pulpit:device/unreachable",
            message=message,
            details={"device_id": device_id, **(details or {})},
        )
        self.device_id = device_id


class TransportSendError(PulpitError):
    """Raised when writing a frame to a device connection fails."""

    def __init__(
        self, device_id: str, reason: str, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            code="pulpit:transport/send_failed",
            message=f"Failed to send to device {device_id}: {reason}",
            details={"device_id": device_id, **(details or {})},
        )
        self.device_id = device_id
        self.reason = reason


class DuplicateCorrelationError(PulpitError):
    """Raised when a correlation id is already awaiting a result."""

    def __init__(self, correlation_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="pulpit:execution/duplicate_correlation_id",
            message=f"Correlation id already pending: {correlation_id}",
            details={"correlation_id": correlation_id, **(details or {})},
        )
        self.correlation_id = correlation_id


class PushNotConfiguredError(PulpitError):
    """Raised when a push is requested but no dispatcher is configured."""

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="pulpit:push/not_configured",
            message="Push dispatcher is not configured",
            details=details or {},
        )


class PushDeliveryError(PulpitError):
    """Raised when the push provider rejects or fails to accept a notification.

    Attributes:
        status_code: HTTP status returned by the provider (0 for network errors)
        reason: Provider reason string (e.g. ``BadDeviceToken``)
    """

    def __init__(
        self,
        status_code: int,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code="pulpit:push/delivery_failed",
            message=f"Push delivery failed ({status_code}): {reason}",
            details={"status_code": status_code, "reason": reason, **(details or {})},
        )
        self.status_code = status_code
        self.reason = reason


class ScheduledTaskNotFoundError(PulpitError):
    """Raised when a scheduled task is missing or no longer cancellable."""

    def __init__(self, task_id: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="pulpit:schedule/not_found",
            message=f"Scheduled task not found or already executed: {task_id}",
            details={"task_id": task_id, **(details or {})},
        )
        self.task_id = task_id


__all__ = [
    "DeviceNotFoundError",
    "DeviceUnreachableError",
    "DuplicateCorrelationError",
    "InvalidTransitionError",
    "NoAutomationDeviceError",
    "PulpitError",
    "PushDeliveryError",
    "PushNotConfiguredError",
    "ScheduledTaskNotFoundError",
    "TransportSendError",
]
