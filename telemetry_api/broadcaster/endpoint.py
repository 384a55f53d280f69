"""WebSocket endpoint bridging FastAPI sockets to the broadcaster."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    broadcaster = websocket.app.state.services.broadcaster
    await websocket.accept()
    connection = broadcaster.register(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                broadcaster.direct_send(connection.id, "error", {"message": "Binary frames are not supported"})
                continue
            broadcaster.handle_client_frame(connection.id, text)
    finally:
        broadcaster.unregister(connection.id)
