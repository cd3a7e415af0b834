"""Pulpit: device session and execution coordination for push-enabled devices.

Pulpit keeps track of which registered devices hold a live, authenticated
WebSocket session, routes shortcut executions to them, correlates the
results that come back, and falls back to APNs silent pushes when no
session is available.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
