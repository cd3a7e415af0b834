"""FastAPI WebSocket transport for device connections.

Adapts a Starlette WebSocket to the ConnectionHandle protocol and runs the
receive loop that feeds frames into a DeviceConnection.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from pulpit.models.enums import ConnectionState
from pulpit.observability.logging import get_logger
from pulpit.transport.protocol import DeviceProtocol

logger = get_logger(__name__)

WS_CLOSE_NORMAL = 1000


class WebSocketConnectionHandle:
    """ConnectionHandle backed by a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False
        self._close_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self.close_code: int | None = None

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    @property
    def client(self) -> Any:
        return self._websocket.client

    async def send(self, frame: dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError("connection is closed")
        # Starlette does not serialize concurrent writers on one socket
        async with self._send_lock:
            await self._websocket.send_text(json.dumps(frame))

    def close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        self._close_task = asyncio.get_running_loop().create_task(self._close(code, reason))

    async def _close(self, code: int, reason: str) -> None:
        if self._websocket.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._websocket.close(code=code, reason=reason)
        except (OSError, RuntimeError) as close_err:
            logger.debug("pulpit.websocket.close_error", code=code, error=str(close_err))

    async def wait_closed(self) -> None:
        if self._close_task is not None:
            with suppress(asyncio.CancelledError):
                await self._close_task


async def handle_device_websocket(
    websocket: WebSocket,
    protocol: DeviceProtocol,
    active_connections: set[WebSocketConnectionHandle] | None = None,
) -> None:
    """Serve one device socket until it closes."""
    await websocket.accept()
    handle = WebSocketConnectionHandle(websocket)
    if active_connections is not None:
        active_connections.add(handle)
    connection = protocol.open_connection(handle)
    logger.info(
        "pulpit.websocket.connected",
        client=websocket.client,
        connection_id=connection.connection_id,
    )
    try:
        while connection.state is not ConnectionState.CLOSED:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect as e:
                logger.debug("pulpit.websocket.disconnected", code=e.code)
                break
            except Exception as e:
                logger.warning("pulpit.websocket.receive_error", error=str(e))
                break
            await connection.handle_frame(raw)
    except Exception as e:
        logger.warning("pulpit.websocket.connection_error", error=str(e))
    finally:
        connection.on_transport_closed()
        if active_connections is not None:
            active_connections.discard(handle)
        handle.close(WS_CLOSE_NORMAL, "")
        await handle.wait_closed()
        logger.info(
            "pulpit.websocket.closed",
            client=websocket.client,
            device_id=connection.device_id,
            code=handle.close_code,
        )


__all__ = ["WebSocketConnectionHandle", "handle_device_websocket"]
