"""Tests for WebSocket frame decoding and encoding."""

import json

import pytest

from pulpit.models.messages import (
    AuthErrorMessage,
    AuthMessage,
    AuthOkMessage,
    ExecuteResultMessage,
    ExecuteShortcutMessage,
    FrameDecodeError,
    NotificationMessage,
    PingMessage,
    PongMessage,
    StatusMessage,
    decode_inbound,
    encode_outbound,
)


class TestDecodeInbound:
    """Tests for decode_inbound."""

    def test_auth(self) -> None:
        message = decode_inbound('{"type": "auth", "token": "secret"}')

        assert isinstance(message, AuthMessage)
        assert message.token == "secret"

    def test_token_not_in_repr(self) -> None:
        """Credentials do not leak through repr() into logs."""
        message = decode_inbound('{"type": "auth", "token": "secret"}')

        assert "secret" not in repr(message)

    def test_pong(self) -> None:
        assert isinstance(decode_inbound('{"type": "pong"}'), PongMessage)

    def test_execute_result(self) -> None:
        """Result frames keep the correlation id and optional fields."""
        message = decode_inbound(
            json.dumps({"type": "execute_result", "id": "01HX", "success": False, "error": "nope"})
        )

        assert isinstance(message, ExecuteResultMessage)
        assert message.id == "01HX"
        assert message.success is False
        assert message.output is None
        assert message.error == "nope"

    @pytest.mark.parametrize("key", ["ready", "automationServerReady"])
    def test_status_accepts_both_keys(self, key: str) -> None:
        message = decode_inbound(json.dumps({"type": "status", key: True}))

        assert isinstance(message, StatusMessage)
        assert message.ready is True

    def test_bytes_frame(self) -> None:
        assert isinstance(decode_inbound(b'{"type": "pong"}'), PongMessage)

    def test_unknown_fields_are_ignored(self) -> None:
        """Newer clients may add fields; older servers must still parse the frame."""
        message = decode_inbound('{"type": "pong", "clientVersion": "2.0"}')

        assert isinstance(message, PongMessage)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '"auth"',
            '{"type": "unknown"}',
            '{"token": "missing type"}',
            '{"type": "auth", "token": ""}',
            '{"type": "execute_result", "success": true}',
        ],
    )
    def test_malformed_frames_raise(self, raw: str) -> None:
        with pytest.raises(FrameDecodeError):
            decode_inbound(raw)


class TestEncodeOutbound:
    """Tests for encode_outbound wire shapes."""

    def test_auth_ok_uses_camel_case(self) -> None:
        assert encode_outbound(AuthOkMessage(device_id="dev-1")) == {
            "type": "auth_ok",
            "deviceId": "dev-1",
        }

    def test_auth_error(self) -> None:
        assert encode_outbound(AuthErrorMessage(reason="Invalid token")) == {
            "type": "auth_error",
            "reason": "Invalid token",
        }

    def test_ping(self) -> None:
        assert encode_outbound(PingMessage()) == {"type": "ping"}

    def test_execute_shortcut_omits_missing_input(self) -> None:
        """Input is only sent when present."""
        frame = encode_outbound(ExecuteShortcutMessage(id="01HX", name="Backup"))

        assert frame == {"type": "execute_shortcut", "id": "01HX", "shortcutName": "Backup"}

    def test_execute_shortcut_with_input(self) -> None:
        frame = encode_outbound(ExecuteShortcutMessage(id="01HX", name="Say", input="hello"))

        assert frame["input"] == "hello"

    def test_notification_wraps_payload(self) -> None:
        frame = encode_outbound(NotificationMessage(payload={"title": "Hi"}))

        assert frame == {"type": "notification", "payload": {"title": "Hi"}}
