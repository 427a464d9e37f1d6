"""
Backup Routes - Start, stop and monitor backup runs

Provides endpoints for starting a backup against the connected
configurator page, stopping it, reading its status, acknowledging a
failure and downloading finished archives.
"""

from fastapi import APIRouter
from fastapi.responses import FileResponse
from pydantic import BaseModel
from typing import List, Optional
import logging

from backup_models import CaptureOptions
from preferences_manager import validate_options
from routes import get_deps
from utils.error_handler import create_success_response, handle_api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backup", tags=["backup"])


# Request models
class StartBackupRequest(BaseModel):
    """Any field left out is taken from the saved preferences"""
    screenshots: Optional[bool] = None
    cli: Optional[bool] = None
    profiles: Optional[bool] = None
    selected_panels: Optional[List[str]] = None


def resolve_options(request: Optional[StartBackupRequest]) -> CaptureOptions:
    """Merge a start request over the saved preferences"""
    deps = get_deps()
    saved = deps.preferences.load().to_capture_options()
    if request is None:
        return saved
    return CaptureOptions(
        include_screenshots=saved.include_screenshots if request.screenshots is None else request.screenshots,
        include_console_dump=saved.include_console_dump if request.cli is None else request.cli,
        include_variant_cycling=saved.include_variant_cycling if request.profiles is None else request.profiles,
        selected_panels=saved.selected_panels if request.selected_panels is None else set(request.selected_panels),
    )


# =============================================================================
# RUN CONTROL
# =============================================================================

@router.post("/start")
async def start_backup(request: Optional[StartBackupRequest] = None):
    """
    Start a backup run in the background.

    Returns 409 if a run is already active, 400 if the options would
    capture nothing.
    """
    deps = get_deps()
    try:
        options = resolve_options(request)
        validate_options(options)
        deps.executor.start(options)
        logger.info(f"[API] Backup started ({len(options.selected_panels)} tabs selected)")
        return create_success_response(
            data={"options": options.dict()},
            message="Backup started",
        )
    except Exception as e:
        return handle_api_error(e)


@router.post("/stop")
async def stop_backup():
    """Request cancellation of the active run"""
    deps = get_deps()
    accepted = deps.executor.request_cancel()
    if not accepted:
        logger.info("[API] Stop requested but no backup is running")
    return create_success_response(
        data={"stopping": accepted},
        message="Stopping backup..." if accepted else "No backup running",
    )


@router.get("/status")
async def backup_status():
    """Current phase, progress, last status event and indicator state"""
    deps = get_deps()
    executor = deps.executor
    reporter = executor.reporter
    last_result = executor.last_result
    return {
        "success": True,
        "running": executor.is_running,
        "phase": executor.phase.value,
        "progress": reporter.progress.dict() if reporter else None,
        **deps.status.snapshot(),
        "last_result": last_result.dict() if last_result else None,
    }


@router.post("/acknowledge")
async def acknowledge_failure():
    """Clear the persistent failure indicator"""
    deps = get_deps()
    cleared = deps.status.acknowledge()
    return create_success_response(data={"cleared": cleared})


# =============================================================================
# ARCHIVES
# =============================================================================

@router.get("/archives")
async def list_archives():
    deps = get_deps()
    return create_success_response(data={"archives": deps.archive_store.list_archives()})


@router.get("/download/{name}")
async def download_archive(name: str):
    """Download a finished backup archive"""
    deps = get_deps()
    try:
        path = deps.archive_store.get_path(name)
    except Exception as e:
        return handle_api_error(e)
    return FileResponse(path, media_type="application/zip", filename=name)
