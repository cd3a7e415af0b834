"""Execution correlation: match asynchronous device results to waiting callers.

Each outbound execute_shortcut frame carries a fresh correlation id. The
caller registers the id with ``expect`` before sending and awaits the
returned ExecutionHandle. The handle completes exactly once, with whichever
comes first: the device's execute_result, the timeout, or an explicit
discard. Everything after the first writer is a no-op.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from functools import partial

from pulpit.clock import Clock, LoopClock, TimerHandle
from pulpit.errors import DuplicateCorrelationError
from pulpit.models.entities import ExecutionOutcome
from pulpit.models.enums import DeliveryChannel
from pulpit.models.types import CorrelationID
from pulpit.observability.logging import get_logger
from pulpit.observability.metrics import MetricsCollector, get_metrics

logger = get_logger(__name__)


class ExecutionHandle:
    """Single-resolution completion handle for one correlation id.

    ``resolve`` may be called from any thread; only the first call wins.
    Awaiting the handle never cancels it, so a caller that gives up does not
    steal the outcome from the correlator.
    """

    def __init__(
        self,
        correlation_id: CorrelationID,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.correlation_id = correlation_id
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[ExecutionOutcome] = self._loop.create_future()
        self._lock = threading.Lock()
        self._outcome: ExecutionOutcome | None = None

    @property
    def done(self) -> bool:
        with self._lock:
            return self._outcome is not None

    @property
    def outcome(self) -> ExecutionOutcome | None:
        with self._lock:
            return self._outcome

    def resolve(self, outcome: ExecutionOutcome) -> bool:
        """Complete the handle. Returns False if it was already completed."""
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._settle(outcome)
        else:
            self._loop.call_soon_threadsafe(self._settle, outcome)
        return True

    def _settle(self, outcome: ExecutionOutcome) -> None:
        if not self._future.done():
            self._future.set_result(outcome)

    async def wait(self) -> ExecutionOutcome:
        return await asyncio.shield(self._future)

    def __await__(self):  # type: ignore[no-untyped-def]
        return self.wait().__await__()


@dataclass
class PendingExecution:
    correlation_id: CorrelationID
    handle: ExecutionHandle
    timeout_seconds: float
    started_at: float
    timer: TimerHandle | None = None


class ExecutionCorrelator:
    """Table of executions awaiting a result.

    Thread-safe using RLock. An entry leaves the table exactly once: on
    result, on timeout, or on discard. Results for ids that are not pending
    (late, duplicate, or unknown) are logged and dropped.

    Args:
        clock: Timer source (defaults to the running event loop)
        metrics: Metrics collector (defaults to the process-wide one)
    """

    def __init__(
        self,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._pending: dict[CorrelationID, PendingExecution] = {}
        self._clock = clock or LoopClock()
        self._metrics = metrics or get_metrics()

    def expect(self, correlation_id: CorrelationID, timeout_seconds: float) -> ExecutionHandle:
        """Register a pending execution and arm its timeout.

        Raises:
            DuplicateCorrelationError: If the id is already pending
        """
        handle = ExecutionHandle(correlation_id)
        with self._lock:
            if correlation_id in self._pending:
                raise DuplicateCorrelationError(correlation_id)
            pending = PendingExecution(
                correlation_id=correlation_id,
                handle=handle,
                timeout_seconds=timeout_seconds,
                started_at=self._clock.now(),
            )
            self._pending[correlation_id] = pending
            pending.timer = self._clock.call_later(
                timeout_seconds, partial(self._on_timeout, correlation_id, handle)
            )
        logger.debug(
            "pulpit.execution.pending",
            correlation_id=correlation_id,
            timeout_seconds=timeout_seconds,
        )
        return handle

    def resolve(self, correlation_id: CorrelationID, outcome: ExecutionOutcome) -> bool:
        """Deliver a device result. Returns False if nothing was waiting for it."""
        pending = self._take(correlation_id)
        if pending is None:
            self._metrics.increment_counter("pulpit_late_results_total")
            logger.info("pulpit.execution.late_result", correlation_id=correlation_id)
            return False
        self._metrics.observe_histogram(
            "pulpit_execution_duration_seconds",
            self._clock.now() - pending.started_at,
            {"channel": outcome.channel.value},
        )
        return pending.handle.resolve(outcome)

    def discard(self, correlation_id: CorrelationID, outcome: ExecutionOutcome) -> bool:
        """Abandon a pending execution (e.g. the send failed), completing it with ``outcome``."""
        pending = self._take(correlation_id)
        if pending is None:
            return False
        logger.debug("pulpit.execution.discarded", correlation_id=correlation_id)
        return pending.handle.resolve(outcome)

    def is_pending(self, correlation_id: CorrelationID) -> bool:
        with self._lock:
            return correlation_id in self._pending

    def pending_ids(self) -> list[CorrelationID]:
        with self._lock:
            return list(self._pending)

    def shutdown(self, reason: str) -> int:
        """Fail every pending execution. Returns how many were failed."""
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for entry in pending:
            if entry.timer is not None:
                entry.timer.cancel()
            entry.handle.resolve(
                ExecutionOutcome.failed(
                    DeliveryChannel.SOCKET, reason, execution_id=entry.correlation_id
                )
            )
        return len(pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def _take(self, correlation_id: CorrelationID) -> PendingExecution | None:
        with self._lock:
            pending = self._pending.pop(correlation_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending

    def _on_timeout(self, correlation_id: CorrelationID, handle: ExecutionHandle) -> None:
        with self._lock:
            pending = self._pending.get(correlation_id)
            # A newer execution may have reused the id after this one finished
            if pending is None or pending.handle is not handle:
                return
            del self._pending[correlation_id]
        logger.warning(
            "pulpit.execution.timed_out",
            correlation_id=correlation_id,
            timeout_seconds=pending.timeout_seconds,
        )
        handle.resolve(ExecutionOutcome.timed_out(correlation_id, pending.timeout_seconds))


__all__ = ["ExecutionCorrelator", "ExecutionHandle", "PendingExecution"]
