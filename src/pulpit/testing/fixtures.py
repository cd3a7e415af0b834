"""Pytest fixtures for Pulpit tests.

Register with ``pytest_plugins = ["pulpit.testing.fixtures"]``.

Fixtures:
    metrics: Fresh MetricsCollector (isolated from the process-wide one).
    manual_clock: ManualClock starting at t=0.
    device / automation_device: Sample registered devices.
    directory: InMemoryDeviceDirectory holding both sample devices.
    registry, correlator, protocol: Core components wired to the fixtures above.
    push_dispatcher: RecordingPushDispatcher.
    router: DeliveryRouter with push enabled.
"""

from __future__ import annotations

from typing import Any

import pytest

from pulpit.devices.directory import InMemoryDeviceDirectory
from pulpit.execution.correlator import ExecutionCorrelator
from pulpit.models.entities import Device
from pulpit.models.messages import AuthMessage
from pulpit.observability.metrics import MetricsCollector
from pulpit.routing.router import DeliveryRouter
from pulpit.sessions.registry import SessionRegistry
from pulpit.testing.fakes import FakeConnection, ManualClock, RecordingPushDispatcher
from pulpit.transport.protocol import DeviceConnection, DeviceProtocol


def make_device(
    device_id: str = "dev-phone",
    name: str = "Phone",
    credential: str | None = None,
    **overrides: Any,
) -> Device:
    """Build a Device with predictable token and credential values."""
    return Device(
        id=device_id,
        name=name,
        push_token=overrides.pop("push_token", f"apns-{device_id}"),
        registration_credential=credential or f"cred-{device_id}",
        **overrides,
    )


async def authenticate(
    protocol: DeviceProtocol, device: Device, name: str | None = None
) -> tuple[DeviceConnection, FakeConnection]:
    """Open a fake connection and complete the auth handshake for ``device``."""
    handle = FakeConnection(name or device.id)
    connection = protocol.open_connection(handle)
    await connection.handle_message(AuthMessage(token=device.registration_credential))
    return connection, handle


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def device() -> Device:
    return make_device("dev-phone", "Phone")


@pytest.fixture
def automation_device() -> Device:
    return make_device("dev-ipad", "Living Room iPad", is_automation_server=True)


@pytest.fixture
def directory(device: Device, automation_device: Device) -> InMemoryDeviceDirectory:
    return InMemoryDeviceDirectory([device, automation_device])


@pytest.fixture
def registry(
    manual_clock: ManualClock,
    directory: InMemoryDeviceDirectory,
    metrics: MetricsCollector,
) -> SessionRegistry:
    return SessionRegistry(clock=manual_clock.now, directory=directory, metrics=metrics)


@pytest.fixture
def correlator(manual_clock: ManualClock, metrics: MetricsCollector) -> ExecutionCorrelator:
    return ExecutionCorrelator(clock=manual_clock, metrics=metrics)


@pytest.fixture
def protocol(
    registry: SessionRegistry,
    correlator: ExecutionCorrelator,
    directory: InMemoryDeviceDirectory,
    manual_clock: ManualClock,
    metrics: MetricsCollector,
) -> DeviceProtocol:
    return DeviceProtocol(
        registry,
        correlator,
        directory,
        clock=manual_clock,
        auth_timeout=10.0,
        heartbeat_interval=30.0,
        metrics=metrics,
    )


@pytest.fixture
def push_dispatcher() -> RecordingPushDispatcher:
    return RecordingPushDispatcher()


@pytest.fixture
def router(
    protocol: DeviceProtocol,
    directory: InMemoryDeviceDirectory,
    push_dispatcher: RecordingPushDispatcher,
    metrics: MetricsCollector,
) -> DeliveryRouter:
    return DeliveryRouter(protocol, directory, push=push_dispatcher, metrics=metrics)
