"""Device transport: the connection protocol, its WebSocket adapter, and webhooks.

The HTTP application lives in pulpit.transport.server.
"""

from pulpit.transport.protocol import (
    VALID_TRANSITIONS,
    DeviceConnection,
    DeviceProtocol,
    can_transition,
)
from pulpit.transport.webhook import WebhookCaller, WebhookResult
from pulpit.transport.websocket import WebSocketConnectionHandle, handle_device_websocket

__all__ = [
    "DeviceConnection",
    "DeviceProtocol",
    "VALID_TRANSITIONS",
    "WebSocketConnectionHandle",
    "WebhookCaller",
    "WebhookResult",
    "can_transition",
    "handle_device_websocket",
]
