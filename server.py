"""
Betaflight Backup - FastAPI Server
Version: 1.0.0
"""

import asyncio
import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from archive_manager import ArchiveStore
from backup_executor import BackupExecutor
from browser_bridge import BrowserBridge
from preferences_manager import PreferencesManager
from routes import RouteDependencies, set_dependencies
from routes import backup as backup_routes
from routes import health as health_routes
from routes import preferences as preferences_routes
from routes import status_stream as status_stream_routes
from status_channel import StatusChannel
from utils.log_stream import LogStreamHandler

VERSION = "1.0.0"

# Configuration from environment
CONFIGURATOR_URL = os.getenv("CONFIGURATOR_URL", "https://app.betaflight.com")
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "false").lower() == "true"
BROWSER_CDP_URL = os.getenv("BROWSER_CDP_URL", "") or None
DATA_DIR = os.getenv("DATA_DIR", "data")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format='[%(asctime)s] %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

logger = logging.getLogger(__name__)

# Live log viewer: buffered records plus push to /api/ws/logs clients
log_stream = LogStreamHandler(capacity=200)
log_stream.setLevel(logging.DEBUG)
log_stream.setFormatter(logging.Formatter('%(message)s'))
logging.getLogger().addHandler(log_stream)

app = FastAPI(
    title="Betaflight Backup API",
    version=VERSION,
    description="Screenshot, profile and CLI backup of the Betaflight web configurator"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Reject malformed request bodies with the field errors"""
    logger.warning(f"[API] Invalid request {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {"message": "Invalid request", "type": "RequestValidationError"},
            "detail": exc.errors(),
        }
    )


app.include_router(backup_routes.router)
app.include_router(preferences_routes.router)
app.include_router(health_routes.router)
app.include_router(status_stream_routes.router)

# Created on startup
browser_bridge: Optional[BrowserBridge] = None
status_channel: Optional[StatusChannel] = None
backup_executor: Optional[BackupExecutor] = None


@app.on_event("startup")
async def startup_event():
    """Build the backup engine and attach to the configurator page"""
    global browser_bridge, status_channel, backup_executor

    logger.info(f"[Server] Starting Betaflight Backup v{VERSION}")
    logger.info(f"[Server] Configurator: {CONFIGURATOR_URL}, data dir: {DATA_DIR}")

    browser_bridge = BrowserBridge(
        url=CONFIGURATOR_URL,
        headless=BROWSER_HEADLESS,
        cdp_url=BROWSER_CDP_URL,
    )
    status_channel = StatusChannel()
    archive_store = ArchiveStore(os.path.join(DATA_DIR, "backups"))
    preferences = PreferencesManager(DATA_DIR)
    backup_executor = BackupExecutor(browser_bridge, status_channel, archive_store)

    set_dependencies(RouteDependencies(
        bridge=browser_bridge,
        status=status_channel,
        executor=backup_executor,
        preferences=preferences,
        archive_store=archive_store,
        version=VERSION,
    ))

    try:
        await browser_bridge.connect()
        logger.info("[Server] ✅ Browser attached")
    except Exception as e:
        logger.error(f"[Server] Could not attach to the configurator: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop a running backup (profiles get restored) and release the browser"""
    logger.info("[Server] Shutting down Betaflight Backup...")

    if backup_executor and backup_executor.is_running:
        backup_executor.request_cancel()
        try:
            await asyncio.wait_for(backup_executor.wait(), timeout=15.0)
        except asyncio.TimeoutError:
            logger.warning("[Server] Backup did not stop in time")

    if browser_bridge:
        await browser_bridge.close()

    set_dependencies(None)
    logger.info("[Server] Shutdown complete")


@app.get("/api/logs")
async def get_logs(count: int = 100, level: Optional[str] = None, component: Optional[str] = None):
    """Recent log entries, e.g. /api/logs?level=warning&component=CLI"""
    return {
        "success": True,
        "logs": log_stream.recent(count, min_level=level, component=component),
        "viewers": len(log_stream.clients),
    }


@app.websocket("/api/ws/logs")
async def websocket_logs(websocket: WebSocket):
    """
    Live log stream.

    Sends {"type": "history", "data": [...]} on connect, then one
    {"type": "log", "data": {...}} per record. Replies "pong" to "ping" and
    pings idle clients every 30s.
    """
    await websocket.accept()
    log_stream.add_client(websocket)
    logger.info("[WS-Logs] Viewer connected")

    try:
        await websocket.send_json({"type": "history", "data": log_stream.recent(100)})

        while True:
            try:
                text = await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue
            if text == "ping":
                await websocket.send_json({"type": "pong"})

    except WebSocketDisconnect:
        logger.info("[WS-Logs] Viewer disconnected")
    except Exception as e:
        logger.error(f"[WS-Logs] Error: {e}")
    finally:
        log_stream.remove_client(websocket)


if __name__ == "__main__":
    port = int(os.getenv("PORT", 3000))

    logger.info(f"Starting Betaflight Backup v{VERSION} on http://localhost:{port} (API under /api)")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level=LOG_LEVEL.lower()
    )
