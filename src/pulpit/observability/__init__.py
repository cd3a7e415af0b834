"""Observability for the Pulpit gateway.

Structured logging (structlog) and Prometheus-compatible metrics.

Example:
    >>> from pulpit.observability import get_logger, get_metrics
    >>> logger = get_logger(__name__)
    >>> logger.info("pulpit.session.registered", device_id="01HX...")
    >>> get_metrics().increment_counter("pulpit_ws_connections_total")
"""

from pulpit.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_debug_mode,
    sanitize_for_logging,
)
from pulpit.observability.metrics import (
    MetricsCollector,
    get_metrics,
    reset_metrics,
)

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "is_debug_mode",
    "reset_metrics",
    "MetricsCollector",
    "sanitize_for_logging",
]
