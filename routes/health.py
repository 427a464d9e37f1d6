"""
Health Routes - System Health Check

Reports whether the server is up, whether the configurator page is
attached and whether a backup is running.
"""

from fastapi import APIRouter
import logging
from routes import get_deps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """
    Health check endpoint

    Supports both GET and HEAD methods for Docker health checks.
    """
    deps = get_deps()

    browser_status = "connected" if (deps.bridge and deps.bridge.is_connected) else "disconnected"

    return {
        "status": "ok",
        "version": deps.version,
        "message": "Betaflight Backup is running",
        "browser_status": browser_status,
        "backup_running": deps.executor.is_running,
    }
