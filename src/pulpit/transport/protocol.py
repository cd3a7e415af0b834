"""Device connection protocol.

Each accepted socket gets a DeviceConnection, a small state machine:

    UNAUTHENTICATED --auth ok--> AUTHENTICATED --close--> CLOSED
    UNAUTHENTICATED --auth fail / timeout / close--> CLOSED

DeviceProtocol is the server-wide side: it owns the collaborators every
connection needs (session registry, execution correlator, device directory,
clock), sends commands to devices and runs the heartbeat.

The protocol is transport-neutral; any object satisfying ConnectionHandle
can be driven through it (the FastAPI adapter lives in transport.websocket,
tests use pulpit.testing.FakeConnection).
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from pulpit.clock import Clock, LoopClock, TimerHandle
from pulpit.devices.directory import DeviceDirectory
from pulpit.errors import InvalidTransitionError, TransportSendError
from pulpit.execution.correlator import ExecutionCorrelator
from pulpit.models.constants import (
    AUTH_TIMEOUT_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    STALE_HEARTBEAT_INTERVALS,
    WS_CLOSE_AUTH_TIMEOUT,
    WS_CLOSE_AUTH_TIMEOUT_REASON,
    WS_CLOSE_DEVICE_REMOVED,
    WS_CLOSE_DEVICE_REMOVED_REASON,
    WS_CLOSE_INVALID_TOKEN,
    WS_CLOSE_INVALID_TOKEN_REASON,
)
from pulpit.models.entities import ExecutionOutcome
from pulpit.models.enums import ConnectionState
from pulpit.models.ids import generate_id
from pulpit.models.messages import (
    AuthErrorMessage,
    AuthMessage,
    AuthOkMessage,
    ExecuteResultMessage,
    FrameDecodeError,
    InboundMessage,
    OutboundMessage,
    PingMessage,
    PongMessage,
    StatusMessage,
    decode_inbound,
    encode_outbound,
)
from pulpit.models.types import DeviceID
from pulpit.observability.logging import get_logger
from pulpit.observability.metrics import MetricsCollector, get_metrics
from pulpit.sessions.registry import ConnectionHandle, SessionRegistry

logger = get_logger(__name__)

VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.UNAUTHENTICATED: {ConnectionState.AUTHENTICATED, ConnectionState.CLOSED},
    ConnectionState.AUTHENTICATED: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


def can_transition(from_state: ConnectionState, to_state: ConnectionState) -> bool:
    """Check if a connection state transition is valid.

    Example:
        >>> can_transition(ConnectionState.UNAUTHENTICATED, ConnectionState.AUTHENTICATED)
        True
        >>> can_transition(ConnectionState.CLOSED, ConnectionState.AUTHENTICATED)
        False
    """
    return to_state in VALID_TRANSITIONS.get(from_state, set())


class DeviceConnection:
    """Protocol state for one device socket.

    Created by DeviceProtocol.open_connection, which arms the auth deadline.
    The transport feeds every received text frame to ``handle_frame`` in
    order and calls ``on_transport_closed`` exactly once when the socket goes
    away, whatever the reason.
    """

    def __init__(self, handle: ConnectionHandle, protocol: DeviceProtocol) -> None:
        self.connection_id = generate_id()
        self.handle = handle
        self.device_id: DeviceID | None = None
        self._protocol = protocol
        self._state = ConnectionState.UNAUTHENTICATED
        self._auth_timer: TimerHandle | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _transition(self, to_state: ConnectionState) -> None:
        if not can_transition(self._state, to_state):
            raise InvalidTransitionError(
                from_state=self._state.value,
                to_state=to_state.value,
                details={"connection_id": self.connection_id},
            )
        self._state = to_state

    def arm_auth_deadline(self, timeout_seconds: float) -> None:
        self._auth_timer = self._protocol.clock.call_later(
            timeout_seconds, self._on_auth_timeout
        )

    def _cancel_auth_deadline(self) -> None:
        if self._auth_timer is not None:
            self._auth_timer.cancel()
            self._auth_timer = None

    def _on_auth_timeout(self) -> None:
        self._auth_timer = None
        if self._state is not ConnectionState.UNAUTHENTICATED:
            return
        self._protocol.metrics.increment_counter("pulpit_auth_timeouts_total")
        logger.warning("pulpit.connection.auth_timeout", connection_id=self.connection_id)
        self.close(WS_CLOSE_AUTH_TIMEOUT, WS_CLOSE_AUTH_TIMEOUT_REASON)

    async def handle_frame(self, raw: str | bytes) -> None:
        """Decode one inbound frame and act on it. Malformed frames are dropped."""
        if self._state is ConnectionState.CLOSED:
            return
        try:
            message = decode_inbound(raw)
        except FrameDecodeError as e:
            self._protocol.metrics.increment_counter("pulpit_protocol_errors_total")
            logger.debug(
                "pulpit.connection.bad_frame",
                connection_id=self.connection_id,
                device_id=self.device_id,
                error=str(e),
            )
            return
        try:
            await self.handle_message(message)
        except Exception as e:
            # A failing collaborator costs this message, not the connection
            self._protocol.metrics.increment_counter("pulpit_protocol_errors_total")
            logger.exception(
                "pulpit.connection.message_failed",
                connection_id=self.connection_id,
                device_id=self.device_id,
                message_type=message.type,
                error=str(e),
            )

    async def handle_message(self, message: InboundMessage) -> None:
        if self._state is ConnectionState.UNAUTHENTICATED:
            if isinstance(message, AuthMessage):
                await self._authenticate(message)
            else:
                self._protocol.metrics.increment_counter("pulpit_protocol_errors_total")
                logger.debug(
                    "pulpit.connection.unauthenticated_message",
                    connection_id=self.connection_id,
                    message_type=message.type,
                )
            return

        if self._state is not ConnectionState.AUTHENTICATED or self.device_id is None:
            return

        if isinstance(message, PongMessage):
            self._protocol.registry.touch(self.device_id, self.handle)
        elif isinstance(message, ExecuteResultMessage):
            self._protocol.correlator.resolve(
                message.id,
                ExecutionOutcome.from_result(
                    message.id, message.success, message.output, message.error
                ),
            )
        elif isinstance(message, StatusMessage):
            self._protocol.directory.mark_automation_capable(self.device_id, message.ready)
            logger.info(
                "pulpit.connection.status",
                device_id=self.device_id,
                automation_ready=message.ready,
            )
        else:
            logger.debug(
                "pulpit.connection.already_authenticated",
                device_id=self.device_id,
                message_type=message.type,
            )

    async def _authenticate(self, message: AuthMessage) -> None:
        device = self._protocol.directory.find_by_credential(message.token)
        if device is None:
            self._protocol.metrics.increment_counter("pulpit_auth_failures_total")
            logger.warning("pulpit.connection.auth_failed", connection_id=self.connection_id)
            self._cancel_auth_deadline()
            try:
                await self.handle.send(
                    encode_outbound(AuthErrorMessage(reason=WS_CLOSE_INVALID_TOKEN_REASON))
                )
            except Exception as e:
                logger.debug(
                    "pulpit.connection.auth_error_send_failed",
                    connection_id=self.connection_id,
                    error=str(e),
                )
            self.close(WS_CLOSE_INVALID_TOKEN, WS_CLOSE_INVALID_TOKEN_REASON)
            return

        # The deadline may have fired while auth_error was being written above
        if self._state is not ConnectionState.UNAUTHENTICATED:
            return
        self._cancel_auth_deadline()
        self._transition(ConnectionState.AUTHENTICATED)
        self.device_id = device.id
        self._protocol.registry.register(device.id, self.handle)
        self._protocol.metrics.increment_counter("pulpit_auth_success_total")
        logger.info(
            "pulpit.connection.authenticated",
            connection_id=self.connection_id,
            device_id=device.id,
            device_name=device.name,
        )
        try:
            await self.handle.send(encode_outbound(AuthOkMessage(device_id=device.id)))
        except Exception as e:
            # The transport reports the close and cleanup follows from it
            logger.warning(
                "pulpit.connection.auth_ok_send_failed", device_id=device.id, error=str(e)
            )

    def close(self, code: int, reason: str) -> None:
        """Close from the server side (auth failure, timeout, shutdown)."""
        if self._state is ConnectionState.CLOSED:
            return
        self._cancel_auth_deadline()
        if self._state is ConnectionState.AUTHENTICATED and self.device_id is not None:
            self._protocol.registry.remove(self.device_id, self.handle)
        self._transition(ConnectionState.CLOSED)
        self.handle.close(code, reason)

    def on_transport_closed(self) -> None:
        """Clean up after the socket closed or errored, in any state."""
        self._cancel_auth_deadline()
        if self._state is ConnectionState.CLOSED:
            return
        if self._state is ConnectionState.AUTHENTICATED and self.device_id is not None:
            self._protocol.registry.remove(self.device_id, self.handle)
        self._transition(ConnectionState.CLOSED)
        logger.info(
            "pulpit.connection.closed",
            connection_id=self.connection_id,
            device_id=self.device_id,
        )


class DeviceProtocol:
    """Server-wide protocol handler.

    Args:
        registry: Live session registry
        correlator: Pending execution table that execute_result frames resolve
        directory: Device lookup for auth and status updates
        clock: Timer source (defaults to the running event loop)
        auth_timeout: Seconds an unauthenticated connection may stay open
        heartbeat_interval: Seconds between ping rounds
        metrics: Metrics collector (defaults to the process-wide one)

    Example:
        >>> protocol = DeviceProtocol(registry, correlator, directory)
        >>> connection = protocol.open_connection(handle)
        >>> await connection.handle_frame('{"type": "auth", "token": "..."}')
    """

    def __init__(
        self,
        registry: SessionRegistry,
        correlator: ExecutionCorrelator,
        directory: DeviceDirectory,
        clock: Clock | None = None,
        auth_timeout: float = AUTH_TIMEOUT_SECONDS,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.registry = registry
        self.correlator = correlator
        self.directory = directory
        self.clock = clock or LoopClock()
        self.auth_timeout = auth_timeout
        self.heartbeat_interval = heartbeat_interval
        self.metrics = metrics or get_metrics()

    @property
    def stale_after(self) -> float:
        return self.heartbeat_interval * STALE_HEARTBEAT_INTERVALS

    def open_connection(self, handle: ConnectionHandle) -> DeviceConnection:
        """Start the protocol for a freshly accepted socket."""
        connection = DeviceConnection(handle, self)
        connection.arm_auth_deadline(self.auth_timeout)
        self.metrics.increment_counter("pulpit_ws_connections_total")
        logger.debug("pulpit.connection.opened", connection_id=connection.connection_id)
        return connection

    async def send_to_device(self, device_id: DeviceID, message: OutboundMessage) -> None:
        """Write one frame to the device's live session.

        Raises:
            TransportSendError: If the device has no open session or the write fails
        """
        session = self.registry.get(device_id)
        if session is None or not session.handle.is_open:
            raise TransportSendError(device_id, "no live session")
        try:
            await session.handle.send(encode_outbound(message))
        except Exception as e:
            raise TransportSendError(device_id, str(e) or type(e).__name__) from e

    async def broadcast(
        self, device_ids: Iterable[DeviceID], message: OutboundMessage
    ) -> list[DeviceID]:
        """Send a frame to each listed device that is live. Returns the ids reached."""
        delivered: list[DeviceID] = []
        for device_id in device_ids:
            if not self.registry.is_live(device_id):
                continue
            try:
                await self.send_to_device(device_id, message)
            except TransportSendError as e:
                logger.debug(
                    "pulpit.protocol.broadcast_failed", device_id=device_id, error=e.reason
                )
                continue
            delivered.append(device_id)
        return delivered

    async def heartbeat_tick(self) -> list[DeviceID]:
        """Evict stale sessions, then ping the rest. Returns the evicted ids."""
        evicted = self.registry.evict_stale(self.clock.now(), self.stale_after)
        ping = encode_outbound(PingMessage())
        for session in self.registry.sessions():
            if not session.handle.is_open:
                continue
            try:
                await session.handle.send(ping)
            except Exception as e:
                logger.debug(
                    "pulpit.protocol.ping_failed", device_id=session.device_id, error=str(e)
                )
        return evicted

    async def run_heartbeat(self) -> None:
        """Run heartbeat rounds until cancelled."""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.heartbeat_tick()
            except Exception as e:
                logger.exception("pulpit.protocol.heartbeat_error", error=str(e))

    def evict_device(self, device_id: DeviceID) -> bool:
        """Close a removed device's live session, if any."""
        return self.registry.evict(
            device_id, WS_CLOSE_DEVICE_REMOVED, WS_CLOSE_DEVICE_REMOVED_REASON
        )

    def connection_summary(self) -> dict[str, Any]:
        return {
            "live_sessions": len(self.registry),
            "pending_executions": len(self.correlator),
        }


__all__ = [
    "DeviceConnection",
    "DeviceProtocol",
    "VALID_TRANSITIONS",
    "can_transition",
]
