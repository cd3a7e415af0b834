"""Push dispatcher protocol.

A PushDispatcher reaches devices that have no live socket. The router uses
``send_command`` for silent background commands; notification fan-out uses
``send_alert`` for visible notifications. Implementations raise
PushDeliveryError when the provider rejects a push.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pulpit.models.types import CorrelationID, DeviceToken


@runtime_checkable
class PushDispatcher(Protocol):
    async def send_command(
        self,
        device_token: DeviceToken,
        command_id: CorrelationID,
        name: str,
        input: str | None = None,
    ) -> None:
        """Send a silent push carrying an execute_shortcut command."""
        ...

    async def send_alert(
        self,
        device_token: DeviceToken,
        title: str | None,
        text: str | None,
        metadata: dict[str, Any] | None = None,
        *,
        sound: str | None = None,
        thread_id: str | None = None,
        is_time_sensitive: bool = False,
        image: str | None = None,
    ) -> None:
        """Send a visible notification."""
        ...


__all__ = ["PushDispatcher"]
