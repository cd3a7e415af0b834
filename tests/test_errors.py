"""Tests for the Pulpit error taxonomy."""

import pytest

from pulpit.errors import (
    DeviceNotFoundError,
    DeviceUnreachableError,
    DuplicateCorrelationError,
    InvalidTransitionError,
    NoAutomationDeviceError,
    PulpitError,
    PushDeliveryError,
    PushNotConfiguredError,
    ScheduledTaskNotFoundError,
    TransportSendError,
)


class TestPulpitError:
    """Test PulpitError base class."""

    def test_basic_error_creation(self) -> None:
        """Test creating a basic PulpitError."""
        error = PulpitError("pulpit:test/error", "Something broke")

        assert str(error) == "Something broke"
        assert error.code == "pulpit:test/error"
        assert error.message == "Something broke"
        assert error.details == {}

    def test_to_dict(self) -> None:
        """Test serialization to a code/message/details dict."""
        error = PulpitError("pulpit:test/error", "boom", {"attempt": 2})

        assert error.to_dict() == {
            "code": "pulpit:test/error",
            "message": "boom",
            "details": {"attempt": 2},
        }

    @pytest.mark.parametrize(
        "error",
        [
            DeviceNotFoundError("dev-1"),
            DeviceUnreachableError("dev-1"),
            DuplicateCorrelationError("01HX"),
            InvalidTransitionError("closed", "authenticated"),
            NoAutomationDeviceError(),
            PushDeliveryError(410, "Unregistered"),
            PushNotConfiguredError(),
            ScheduledTaskNotFoundError("task-1"),
            TransportSendError("dev-1", "socket closed"),
        ],
    )
    def test_subclasses_share_code_prefix(self, error: PulpitError) -> None:
        """Every concrete error is a PulpitError with a pulpit: code."""
        assert isinstance(error, PulpitError)
        assert error.code.startswith("pulpit:")


class TestSpecificErrors:
    """Test the context carried by specific errors."""

    def test_invalid_transition_details(self) -> None:
        """InvalidTransitionError records both states and extra details."""
        error = InvalidTransitionError("closed", "authenticated", {"connection_id": "c1"})

        assert error.from_state == "closed"
        assert error.to_state == "authenticated"
        assert error.details == {
            "from_state": "closed",
            "to_state": "authenticated",
            "connection_id": "c1",
        }
        assert "closed" in error.message and "authenticated" in error.message

    def test_device_unreachable_default_reason(self) -> None:
        """Without a reason the message names the missing socket and push."""
        error = DeviceUnreachableError("dev-1")

        assert error.device_id == "dev-1"
        assert error.code == "pulpit:device/unreachable"
        assert "not connected via WebSocket" in error.message

    def test_device_unreachable_custom_reason(self) -> None:
        error = DeviceUnreachableError("dev-1", reason="push token revoked")

        assert error.message == "Cannot reach device dev-1: push token revoked"

    def test_push_delivery_error_fields(self) -> None:
        """PushDeliveryError exposes the provider status and reason."""
        error = PushDeliveryError(400, "BadDeviceToken")

        assert error.status_code == 400
        assert error.reason == "BadDeviceToken"
        assert error.details["status_code"] == 400
        assert "BadDeviceToken" in str(error)

    def test_transport_send_error_fields(self) -> None:
        error = TransportSendError("dev-1", "no live session")

        assert error.device_id == "dev-1"
        assert error.reason == "no live session"
        assert error.code == "pulpit:transport/send_failed"

    def test_scheduled_task_not_found(self) -> None:
        error = ScheduledTaskNotFoundError("01HXTASK")

        assert error.task_id == "01HXTASK"
        assert error.details == {"task_id": "01HXTASK"}
