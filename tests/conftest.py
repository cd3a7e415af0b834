"""Shared pytest fixtures for Pulpit tests.

Core fixtures (clock, directory, registry, correlator, protocol, router)
come from pulpit.testing.fixtures; this module adds helpers used by the
HTTP and scheduling tests.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone

import pytest

from pulpit.observability.metrics import reset_metrics

# Load pulpit.testing fixtures (manual_clock, directory, protocol, router, ...)
pytest_plugins = ["pulpit.testing.fixtures"]

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_global_metrics() -> Iterator[None]:
    """Keep the process-wide collector from leaking counts between tests."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed UTC wall-clock instant for scheduling tests."""
    return FIXED_NOW
