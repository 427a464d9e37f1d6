"""
Status Stream Routes - Live backup status over WebSocket

Each client gets its own subscription on the status channel. On connect
the last status (unless it was an error) is sent first, then every event
as it is published.

Message format (JSON):
{
    "type": "status",
    "data": { phase, action, message, progress, timestamp },
    "badge": { text, color }
}
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from dataclasses import asdict
import asyncio
import logging
from routes import get_deps

logger = logging.getLogger(__name__)

router = APIRouter(tags=["status_stream"])

KEEPALIVE_SECONDS = 30.0


@router.websocket("/api/ws/status")
async def status_stream(websocket: WebSocket):
    deps = get_deps()
    await websocket.accept()
    queue = deps.status.subscribe()
    logger.info("[WS-Status] Client connected")

    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue
            await websocket.send_json({
                "type": "status",
                "data": event.dict(),
                "badge": asdict(deps.status.badge),
            })

    except WebSocketDisconnect:
        logger.info("[WS-Status] Client disconnected")
    except Exception as e:
        logger.error(f"[WS-Status] Error: {e}")
    finally:
        deps.status.unsubscribe(queue)
