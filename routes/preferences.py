"""
Preferences Routes - Saved backup options and tab selection
"""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import Dict, Optional
import logging

from preferences_manager import KNOWN_PANELS
from routes import get_deps
from utils.error_handler import create_success_response, handle_api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["preferences"])


class UpdatePreferencesRequest(BaseModel):
    screenshots: Optional[bool] = None
    cli: Optional[bool] = None
    profiles: Optional[bool] = None
    tab_selections: Optional[Dict[str, bool]] = None


@router.get("/preferences")
async def get_preferences():
    deps = get_deps()
    return create_success_response(data=deps.preferences.load().dict())


@router.put("/preferences")
async def update_preferences(request: UpdatePreferencesRequest):
    """Save changed options; fields left out keep their saved value"""
    deps = get_deps()
    try:
        prefs = deps.preferences.update(
            screenshots=request.screenshots,
            cli=request.cli,
            profiles=request.profiles,
            tab_selections=request.tab_selections,
        )
        return create_success_response(data=prefs.dict(), message="Preferences saved")
    except Exception as e:
        return handle_api_error(e)


@router.get("/panels/known")
async def known_panels():
    """Tabs offered for selection with their default state"""
    return create_success_response(data={"panels": KNOWN_PANELS})
