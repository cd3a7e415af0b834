"""Session registry: which devices currently hold a live authenticated socket.

At most one session exists per device. Registering a new connection for a
device closes the previous one with WS_CLOSE_SUPERSEDED before the new one is
visible, so a lookup never sees two live sessions for the same device.

Removal is conditional on the connection handle: when a superseded socket
finally reports its close, it must not evict the session that replaced it.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pulpit.devices.directory import DeviceDirectory
from pulpit.models.constants import (
    WS_CLOSE_STALE,
    WS_CLOSE_STALE_REASON,
    WS_CLOSE_SUPERSEDED,
    WS_CLOSE_SUPERSEDED_REASON,
)
from pulpit.models.types import DeviceID
from pulpit.observability.logging import get_logger
from pulpit.observability.metrics import MetricsCollector, get_metrics

logger = get_logger(__name__)


@runtime_checkable
class ConnectionHandle(Protocol):
    """Transport-neutral view of one device socket.

    ``close`` is synchronous: it marks the handle closed at once and lets
    the transport finish the close handshake in the background, so it can be
    called from timer callbacks and while holding registry locks.
    """

    @property
    def is_open(self) -> bool: ...

    def send(self, frame: dict[str, Any]) -> Awaitable[None]: ...

    def close(self, code: int, reason: str) -> None: ...


@dataclass
class Session:
    """An authenticated connection bound to a device."""

    device_id: DeviceID
    handle: ConnectionHandle
    connected_at: float
    last_heartbeat: float

    def heartbeat_age(self, now: float) -> float:
        return now - self.last_heartbeat


class SessionRegistry:
    """Map of device id to its single live session.

    Thread-safe using RLock; all supersede/evict decisions happen under the
    lock so concurrent registrations for one device serialize.

    Args:
        clock: Monotonic time source for connect and heartbeat stamps
        directory: Optional device directory whose last-seen is updated on register and touch
        metrics: Metrics collector (defaults to the process-wide one)
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        directory: DeviceDirectory | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[DeviceID, Session] = {}
        self._clock = clock
        self._directory = directory
        self._metrics = metrics or get_metrics()

    def register(self, device_id: DeviceID, handle: ConnectionHandle) -> Session:
        """Bind ``handle`` as the device's live session, superseding any previous one."""
        with self._lock:
            previous = self._sessions.get(device_id)
            now = self._clock()
            session = Session(
                device_id=device_id, handle=handle, connected_at=now, last_heartbeat=now
            )
            self._sessions[device_id] = session
            if previous is not None and previous.handle is not handle:
                previous.handle.close(WS_CLOSE_SUPERSEDED, WS_CLOSE_SUPERSEDED_REASON)
                self._metrics.increment_counter("pulpit_sessions_superseded_total")
                logger.info("pulpit.session.superseded", device_id=device_id)

        if self._directory is not None:
            self._directory.touch_last_seen(device_id)
        logger.info("pulpit.session.registered", device_id=device_id, live=len(self))
        return session

    def touch(self, device_id: DeviceID, handle: ConnectionHandle | None = None) -> bool:
        """Refresh the heartbeat and last-seen. Returns False if no matching session exists."""
        with self._lock:
            session = self._sessions.get(device_id)
            if session is None or (handle is not None and session.handle is not handle):
                return False
            session.last_heartbeat = self._clock()

        if self._directory is not None:
            self._directory.touch_last_seen(device_id)
        return True

    def get(self, device_id: DeviceID) -> Session | None:
        with self._lock:
            return self._sessions.get(device_id)

    def is_live(self, device_id: DeviceID) -> bool:
        with self._lock:
            session = self._sessions.get(device_id)
            return session is not None and session.handle.is_open

    def live_device_ids(self) -> set[DeviceID]:
        with self._lock:
            return {d for d, s in self._sessions.items() if s.handle.is_open}

    def sessions(self) -> list[Session]:
        """Snapshot of current sessions."""
        with self._lock:
            return list(self._sessions.values())

    def remove(self, device_id: DeviceID, handle: ConnectionHandle | None = None) -> bool:
        """Drop the device's session.

        When ``handle`` is given the session is only removed if it still
        belongs to that handle.
        """
        with self._lock:
            session = self._sessions.get(device_id)
            if session is None:
                return False
            if handle is not None and session.handle is not handle:
                return False
            del self._sessions[device_id]
        logger.info("pulpit.session.removed", device_id=device_id)
        return True

    def evict(self, device_id: DeviceID, code: int, reason: str) -> bool:
        """Remove the device's session and close its socket with ``code``."""
        with self._lock:
            session = self._sessions.pop(device_id, None)
            if session is None:
                return False
            session.handle.close(code, reason)
        logger.info("pulpit.session.evicted", device_id=device_id, code=code, reason=reason)
        return True

    def evict_stale(self, now: float, stale_after: float) -> list[DeviceID]:
        """Close and drop every session whose last heartbeat is older than ``stale_after``."""
        evicted: list[DeviceID] = []
        with self._lock:
            for device_id, session in list(self._sessions.items()):
                if session.heartbeat_age(now) > stale_after:
                    del self._sessions[device_id]
                    session.handle.close(WS_CLOSE_STALE, WS_CLOSE_STALE_REASON)
                    evicted.append(device_id)
        for device_id in evicted:
            self._metrics.increment_counter("pulpit_sessions_evicted_total")
            logger.warning("pulpit.session.stale", device_id=device_id, stale_after=stale_after)
        return evicted

    def close_all(self, code: int, reason: str) -> int:
        """Close every session (server shutdown). Returns how many were closed."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.handle.close(code, reason)
        return len(sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._sessions


__all__ = ["ConnectionHandle", "Session", "SessionRegistry"]
