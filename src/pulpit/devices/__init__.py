"""Device lookup collaborator.

The device store itself (registration, CRUD, persistence) lives outside the
gateway; the gateway only needs the DeviceDirectory protocol.
"""

from pulpit.devices.directory import DeviceDirectory, InMemoryDeviceDirectory

__all__ = ["DeviceDirectory", "InMemoryDeviceDirectory"]
