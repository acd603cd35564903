"""
WebSocket endpoints.

- /outbound-media-stream - media stream do Twilio -> SessionBridge
- /call-status-ws - dashboard (snapshot + atualizações de status)
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from callbridge.broadcaster import websocket_is_open
from callbridge.runtime import CallBridgeRuntime

from .app import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["streams"])


@router.websocket("/outbound-media-stream")
async def outbound_media_stream(websocket: WebSocket, runtime: CallBridgeRuntime = Depends(get_runtime)):
    await websocket.accept()
    logger.info("Twilio connected to outbound media stream")
    try:
        await runtime.orchestrator.attach_carrier(websocket)
    finally:
        if websocket_is_open(websocket):
            await websocket.close()


@router.websocket("/call-status-ws")
async def call_status_ws(websocket: WebSocket, runtime: CallBridgeRuntime = Depends(get_runtime)):
    await websocket.accept()
    broadcaster = runtime.broadcaster
    await broadcaster.on_connect(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            logger.debug(f"Dashboard message ignored: {message[:100]}")
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.on_disconnect(websocket)
