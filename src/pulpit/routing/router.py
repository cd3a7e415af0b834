"""Delivery router: pick the channel an execution takes to its target.

Order of preference:

1. Webhook target: POST to the URL, no device involved.
2. Live socket: send execute_shortcut and await the correlated result
   (or a timed_out outcome; a timeout does not fall back to push).
3. Silent push: hand the command to APNs and return ACCEPTED, since a
   push cannot report back whether the shortcut ran.
4. Otherwise the device is unreachable and the caller is told at once.

A socket send failure discards the pending execution immediately and moves
on to step 3 rather than waiting out the timeout.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pulpit.devices.directory import DeviceDirectory
from pulpit.errors import (
    DeviceNotFoundError,
    DeviceUnreachableError,
    NoAutomationDeviceError,
    PushDeliveryError,
    TransportSendError,
)
from pulpit.models.constants import DEFAULT_EXECUTION_TIMEOUT_SECONDS
from pulpit.models.entities import Device, ExecutionOutcome, ExecutionRequest
from pulpit.models.enums import DeliveryChannel
from pulpit.models.ids import generate_id
from pulpit.models.messages import ExecuteShortcutMessage
from pulpit.models.types import CorrelationID, DeviceID
from pulpit.observability.logging import get_logger
from pulpit.observability.metrics import MetricsCollector, get_metrics
from pulpit.push.dispatcher import PushDispatcher
from pulpit.transport.protocol import DeviceProtocol
from pulpit.transport.webhook import WebhookCaller

logger = get_logger(__name__)


class DeliveryRouter:
    """Routes execution requests to webhooks, live sockets or push.

    Args:
        protocol: Device protocol (gives access to sessions and the correlator)
        directory: Device lookup for explicit and automation-server targets
        push: Optional push dispatcher used when no socket is available
        webhook: Webhook caller (a default one is created if omitted)
        default_timeout: Timeout used by ``execute_now``
        metrics: Metrics collector (defaults to the process-wide one)
    """

    def __init__(
        self,
        protocol: DeviceProtocol,
        directory: DeviceDirectory,
        push: PushDispatcher | None = None,
        webhook: WebhookCaller | None = None,
        default_timeout: float = DEFAULT_EXECUTION_TIMEOUT_SECONDS,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._protocol = protocol
        self._directory = directory
        self._push = push
        self._webhook = webhook or WebhookCaller()
        self._default_timeout = default_timeout
        self._metrics = metrics or get_metrics()

    @property
    def push_enabled(self) -> bool:
        return self._push is not None

    async def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Run one execution request and return its outcome.

        Raises:
            DeviceNotFoundError: If an explicit target id is unknown
            NoAutomationDeviceError: If no target was given and none is available
            DeviceUnreachableError: If the device has no socket and push is not configured
        """
        if request.webhook_url:
            outcome = await self._webhook.call(request.webhook_url, request.input)
            return self._record(outcome)

        device = self._resolve_target(request.target_device_id)
        execution_id = generate_id()
        shortcut_name = request.shortcut_name or ""

        if self._protocol.registry.is_live(device.id):
            outcome = await self._execute_on_socket(device, execution_id, shortcut_name, request)
            if outcome is not None:
                return self._record(outcome)

        return self._record(
            await self._execute_via_push(device, execution_id, shortcut_name, request.input)
        )

    async def execute_now(self, action: ExecutionRequest | Mapping[str, Any]) -> ExecutionOutcome:
        """Scheduler entry point: run a stored action with the default timeout."""
        if isinstance(action, ExecutionRequest):
            request = action
        else:
            request = ExecutionRequest.model_validate(
                {**action, "timeout_seconds": self._default_timeout}
            )
        return await self.execute(request)

    async def _execute_on_socket(
        self,
        device: Device,
        execution_id: CorrelationID,
        shortcut_name: str,
        request: ExecutionRequest,
    ) -> ExecutionOutcome | None:
        """Send over the live socket; None means the send failed and push should be tried."""
        correlator = self._protocol.correlator
        handle = correlator.expect(execution_id, request.timeout_seconds)
        try:
            await self._protocol.send_to_device(
                device.id,
                ExecuteShortcutMessage(id=execution_id, name=shortcut_name, input=request.input),
            )
        except TransportSendError as e:
            correlator.discard(
                execution_id,
                ExecutionOutcome.failed(DeliveryChannel.SOCKET, e.message, execution_id),
            )
            logger.warning(
                "pulpit.router.socket_send_failed",
                device_id=device.id,
                execution_id=execution_id,
                error=e.reason,
                push_fallback=self.push_enabled,
            )
            return None

        logger.info(
            "pulpit.router.sent",
            channel=DeliveryChannel.SOCKET.value,
            device_id=device.id,
            execution_id=execution_id,
            shortcut=shortcut_name,
        )
        return await handle.wait()

    async def _execute_via_push(
        self,
        device: Device,
        execution_id: CorrelationID,
        shortcut_name: str,
        input: str | None,
    ) -> ExecutionOutcome:
        if self._push is None:
            raise DeviceUnreachableError(device.id)
        try:
            await self._push.send_command(device.push_token, execution_id, shortcut_name, input)
        except PushDeliveryError as e:
            logger.error(
                "pulpit.router.push_failed",
                device_id=device.id,
                execution_id=execution_id,
                status_code=e.status_code,
                reason=e.reason,
            )
            return ExecutionOutcome.failed(DeliveryChannel.PUSH, e.message, execution_id)

        logger.info(
            "pulpit.router.sent",
            channel=DeliveryChannel.PUSH.value,
            device_id=device.id,
            execution_id=execution_id,
            shortcut=shortcut_name,
        )
        return ExecutionOutcome.accepted(execution_id)

    def _resolve_target(self, target_device_id: DeviceID | None) -> Device:
        if target_device_id:
            device = self._directory.find_by_id(target_device_id)
            if device is None:
                raise DeviceNotFoundError(target_device_id)
            return device

        candidates = self._directory.list_automation_capable()
        if not candidates:
            raise NoAutomationDeviceError()
        live = self._protocol.registry.live_device_ids()
        for candidate in candidates:
            if candidate.id in live:
                return candidate
        return candidates[0]

    def _record(self, outcome: ExecutionOutcome) -> ExecutionOutcome:
        self._metrics.increment_counter(
            "pulpit_executions_total",
            {"channel": outcome.channel.value, "status": outcome.status.value},
        )
        return outcome


__all__ = ["DeliveryRouter"]
