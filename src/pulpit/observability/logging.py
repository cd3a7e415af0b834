"""Structured logging for Pulpit.

structlog renders either coloured console lines (development) or one JSON
object per line (production). Event names are dotted and start with
``pulpit.``, e.g. ``pulpit.session.superseded``.

Device registration credentials and APNs tokens travel through the auth
frame and the push path, so every event passes through a redaction
processor unless PULPIT_DEBUG is set.

Environment Variables:
    PULPIT_LOG_FORMAT: "json" or "console" (default)
    PULPIT_LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR
    PULPIT_SERVICE_NAME: value bound as ``service`` on every event
    PULPIT_DEBUG: "true"/"1" disables redaction and enables the OpenAPI docs

Example:
    >>> from pulpit.observability.logging import configure_logging, get_logger
    >>> configure_logging(log_format="json", log_level="INFO")
    >>> logger = get_logger("pulpit.transport.protocol")
    >>> logger.info("pulpit.session.registered", device_id="01HX...")
"""

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from structlog.typing import Processor

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "console"
DEFAULT_SERVICE_NAME = "pulpit"

ENV_LOG_FORMAT = "PULPIT_LOG_FORMAT"
ENV_LOG_LEVEL = "PULPIT_LOG_LEVEL"
ENV_SERVICE_NAME = "PULPIT_SERVICE_NAME"
ENV_DEBUG = "PULPIT_DEBUG"

REDACTED_PLACEHOLDER = "***REDACTED***"

# Case-insensitive substrings; "key" also covers key_path and push key ids
_SENSITIVE_KEY_PATTERNS = ("password", "token", "secret", "key", "authorization", "credential")

_logging_configured = False


def _is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(pattern in lower for pattern in _SENSITIVE_KEY_PATTERNS)


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_for_logging(value)
    if isinstance(value, list):
        return [sanitize_for_logging(item) if isinstance(item, dict) else item for item in value]
    return value


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with secret-looking values replaced.

    Any key containing token, secret, key, credential, password or
    authorization is replaced with REDACTED_PLACEHOLDER, at any depth of
    nested dicts and lists of dicts. The input is not modified.

    Example:
        >>> sanitize_for_logging({"type": "auth", "token": "abc123"})
        {'type': 'auth', 'token': '***REDACTED***'}
    """
    return {
        k: REDACTED_PLACEHOLDER if _is_sensitive_key(k) else _sanitize_value(v)
        for k, v in data.items()
    }


def is_debug_mode() -> bool:
    """Return True if PULPIT_DEBUG is set to a truthy value (e.g. true, 1)."""
    return os.environ.get(ENV_DEBUG, "").strip().lower() in ("true", "1", "yes", "on")


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor applying sanitize_for_logging to event fields."""
    if is_debug_mode():
        return event_dict
    for key in list(event_dict):
        if key == "event":
            continue
        if _is_sensitive_key(key):
            event_dict[key] = REDACTED_PLACEHOLDER
        else:
            event_dict[key] = _sanitize_value(event_dict[key])
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive_fields,
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True,
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    service_name: str | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_format: "json" or "console"; defaults to PULPIT_LOG_FORMAT
        log_level: Minimum level; defaults to PULPIT_LOG_LEVEL
        service_name: Bound as ``service``; defaults to PULPIT_SERVICE_NAME
        force: Reconfigure even if logging was already configured
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    log_format = (log_format or os.environ.get(ENV_LOG_FORMAT, DEFAULT_LOG_FORMAT)).lower()
    log_level = (log_level or os.environ.get(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL)).upper()
    service_name = service_name or os.environ.get(ENV_SERVICE_NAME, DEFAULT_SERVICE_NAME)

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn and httpx log through stdlib; route them through the same renderer
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    structlog.contextvars.bind_contextvars(service=service_name)
    _logging_configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use.

    Example:
        >>> logger = get_logger(__name__).bind(device_id="01HX...")
        >>> logger.info("pulpit.session.touched")
    """
    if not _logging_configured:
        configure_logging()
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables that will be included in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
