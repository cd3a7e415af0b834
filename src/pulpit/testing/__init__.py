"""Testing utilities for Pulpit.

Fakes for connections, time and push delivery, plus pytest fixtures
(registered via ``pytest_plugins = ["pulpit.testing.fixtures"]``).
"""

from pulpit.testing.fakes import (
    FakeConnection,
    ManualClock,
    ManualTimer,
    RecordedPush,
    RecordingPushDispatcher,
)

__all__ = [
    "FakeConnection",
    "ManualClock",
    "ManualTimer",
    "RecordedPush",
    "RecordingPushDispatcher",
]
