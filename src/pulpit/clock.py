"""Time source and timer scheduling for the gateway.

Auth deadlines, execution timeouts and heartbeat ages all go through a
Clock so they can be driven deterministically in tests (see
pulpit.testing.ManualClock). The production clock wraps the running
asyncio loop.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None: ...


@runtime_checkable
class Clock(Protocol):
    """Monotonic time source plus one-shot timers."""

    def now(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds (negative means immediately)."""
        ...


class LoopClock:
    """Clock backed by ``time.monotonic`` and the running event loop's timers."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)


__all__ = ["Clock", "LoopClock", "TimerHandle"]
