from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..core import metrics
from ..core.config import BridgeSettings
from ..core.logging import get_logger
from .host_commands import HostCommandRunner
from .session import BridgeConnection

logger = get_logger(name=__name__)


class WebSocketChannel:
    """Adapts a Starlette WebSocket to the bridge's frame channel."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send(self, frame: dict[str, Any]) -> None:
        if self._websocket.application_state is not WebSocketState.CONNECTED:
            raise ConnectionError("WebSocket is no longer connected")
        try:
            await self._websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise ConnectionError(str(exc)) from exc

    async def close(self) -> None:
        if self._websocket.application_state is not WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.close()
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug("bridge_close_after_disconnect", error=str(exc))


async def _receive_frames(websocket: WebSocket, connection: BridgeConnection) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        payload = message.get("text")
        if payload is None:
            payload = message.get("bytes")
        if payload is None:
            continue
        await connection.handle_frame(payload)


async def serve_bridge_connection(
    websocket: WebSocket,
    *,
    settings: BridgeSettings,
    host_commands: HostCommandRunner,
) -> None:
    """Run one bridge connection until either the client or the process ends it."""

    await websocket.accept()
    connection = BridgeConnection(
        WebSocketChannel(websocket),
        host_commands=host_commands,
        terminate_grace=settings.terminate_grace_seconds,
        read_chunk_size=settings.read_chunk_size,
        drain_timeout=settings.drain_timeout_seconds,
    )
    metrics.connection_opened()
    client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    logger.info("bridge_connection_opened", client=client)

    receiver = asyncio.create_task(_receive_frames(websocket, connection))
    closed = asyncio.create_task(connection.wait_closed())
    try:
        await asyncio.wait({receiver, closed}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (receiver, closed):
            task.cancel()
        results = await asyncio.gather(receiver, closed, return_exceptions=True)
        await connection.shutdown()
        metrics.connection_closed()
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                logger.error("bridge_connection_failed", client=client, error=str(result))
        logger.info("bridge_connection_closed", client=client)


async def bridge_endpoint(websocket: WebSocket) -> None:
    state = websocket.app.state
    await serve_bridge_connection(
        websocket,
        settings=state.settings.bridge,
        host_commands=state.host_commands,
    )


__all__ = ["WebSocketChannel", "bridge_endpoint", "serve_bridge_connection"]
