"""Device directory protocol and in-memory implementation.

The gateway resolves registration credentials to devices, picks automation
servers, and records last-seen and automation-capable flags through this
interface. A relational store can implement the same protocol.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pulpit.models.entities import Device
from pulpit.models.types import DeviceID


@runtime_checkable
class DeviceDirectory(Protocol):
    """Lookup and minimal mutation of registered devices."""

    def find_by_credential(self, credential: str) -> Device | None:
        """Return the device owning a registration credential, or None."""
        ...

    def find_by_id(self, device_id: DeviceID) -> Device | None:
        ...

    def find_by_names(self, names: Iterable[str]) -> list[Device]:
        ...

    def list_all(self) -> list[Device]:
        ...

    def list_automation_capable(self) -> list[Device]:
        """Return automation-capable devices in registration order."""
        ...

    def mark_automation_capable(self, device_id: DeviceID, capable: bool) -> None:
        ...

    def touch_last_seen(self, device_id: DeviceID) -> None:
        ...


class InMemoryDeviceDirectory:
    """In-memory DeviceDirectory.

    Useful for tests and single-process deployments that load devices from
    configuration. Thread-safe using RLock; Device models are immutable, so
    updates replace the stored instance.
    """

    def __init__(self, devices: Iterable[Device] | None = None) -> None:
        self._lock = threading.RLock()
        self._devices: dict[DeviceID, Device] = {}
        for device in devices or ():
            self.add(device)

    def add(self, device: Device) -> None:
        with self._lock:
            self._devices[device.id] = device

    def remove(self, device_id: DeviceID) -> bool:
        with self._lock:
            return self._devices.pop(device_id, None) is not None

    def find_by_credential(self, credential: str) -> Device | None:
        if not credential:
            return None
        with self._lock:
            for device in self._devices.values():
                if device.registration_credential == credential:
                    return device
            return None

    def find_by_id(self, device_id: DeviceID) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def find_by_names(self, names: Iterable[str]) -> list[Device]:
        wanted = set(names)
        with self._lock:
            return [d for d in self._devices.values() if d.name in wanted]

    def list_all(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())

    def list_automation_capable(self) -> list[Device]:
        with self._lock:
            return [d for d in self._devices.values() if d.is_automation_server]

    def mark_automation_capable(self, device_id: DeviceID, capable: bool) -> None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is not None:
                self._devices[device_id] = device.model_copy(
                    update={"is_automation_server": capable}
                )

    def touch_last_seen(self, device_id: DeviceID) -> None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is not None:
                self._devices[device_id] = device.model_copy(
                    update={"last_seen_at": datetime.now(timezone.utc)}
                )


__all__ = ["DeviceDirectory", "InMemoryDeviceDirectory"]
