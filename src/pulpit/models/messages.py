"""WebSocket frames exchanged with devices.

One text frame carries one JSON object tagged by its ``type`` field.

Inbound (device -> server):
    auth{token}, pong, execute_result{id, success, output?, error?}, status{ready}

Outbound (server -> device):
    auth_ok{deviceId}, auth_error{reason}, ping,
    execute_shortcut{id, shortcutName, input?}, notification{payload}

Keys are camelCase on the wire to match the iOS client.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, Field, TypeAdapter, ValidationError

from pulpit.models.base import WireModel


class AuthMessage(WireModel):
    type: Literal["auth"] = "auth"
    token: str = Field(..., min_length=1, repr=False)


class PongMessage(WireModel):
    type: Literal["pong"] = "pong"


class ExecuteResultMessage(WireModel):
    type: Literal["execute_result"] = "execute_result"
    id: str = Field(..., min_length=1)
    success: bool
    output: str | None = None
    error: str | None = None


class StatusMessage(WireModel):
    type: Literal["status"] = "status"
    ready: bool = Field(
        ...,
        validation_alias=AliasChoices("ready", "automationServerReady"),
        description="Device is ready to act as an automation server",
    )


InboundMessage = Annotated[
    Union[AuthMessage, PongMessage, ExecuteResultMessage, StatusMessage],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


class AuthOkMessage(WireModel):
    type: Literal["auth_ok"] = "auth_ok"
    device_id: str = Field(..., serialization_alias="deviceId", validation_alias="deviceId")


class AuthErrorMessage(WireModel):
    type: Literal["auth_error"] = "auth_error"
    reason: str


class PingMessage(WireModel):
    type: Literal["ping"] = "ping"


class ExecuteShortcutMessage(WireModel):
    type: Literal["execute_shortcut"] = "execute_shortcut"
    id: str
    name: str = Field(..., serialization_alias="shortcutName", validation_alias="shortcutName")
    input: str | None = None


class NotificationMessage(WireModel):
    type: Literal["notification"] = "notification"
    payload: dict[str, Any]


OutboundMessage = Union[
    AuthOkMessage,
    AuthErrorMessage,
    PingMessage,
    ExecuteShortcutMessage,
    NotificationMessage,
]


class FrameDecodeError(ValueError):
    """Raised when an inbound frame is not valid JSON or not a known message."""


def decode_inbound(raw: str | bytes) -> InboundMessage:
    """Parse one inbound frame into a typed message.

    Raises:
        FrameDecodeError: If the frame is not JSON, not an object, or fails validation
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON frame: {e}") from e
    if not isinstance(data, dict):
        raise FrameDecodeError("Frame must be a JSON object")
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise FrameDecodeError(
            f"Unrecognised frame of type {data.get('type')!r}: {e.error_count()} error(s)"
        ) from e


def encode_outbound(message: OutboundMessage) -> dict[str, Any]:
    """Serialize an outbound message to the JSON-ready dict sent on the socket."""
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "AuthErrorMessage",
    "AuthMessage",
    "AuthOkMessage",
    "ExecuteResultMessage",
    "ExecuteShortcutMessage",
    "FrameDecodeError",
    "InboundMessage",
    "NotificationMessage",
    "OutboundMessage",
    "PingMessage",
    "PongMessage",
    "StatusMessage",
    "decode_inbound",
    "encode_outbound",
]
