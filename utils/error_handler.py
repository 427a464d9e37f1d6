"""
Centralized Error Handling Module for Betaflight Backup

Provides the backup exception hierarchy, consistent API error responses,
and user-friendly troubleshooting hints.
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger("betaflight_backup")


# =============================================================================
# ERROR HINTS - User-friendly troubleshooting suggestions
# =============================================================================

ERROR_HINTS = {
    "device_disconnected": {
        "message": "Flight controller disconnected",
        "hint": "Reconnect the flight controller in the configurator, wait for the tabs to appear, then start the backup again.",
    },
    "navigation_not_found": {
        "message": "Configurator navigation not found",
        "hint": "Open app.betaflight.com, connect the flight controller and make sure the tab list on the left is visible.",
    },
    "already_running": {
        "message": "Backup is already running",
        "hint": "Wait for the current backup to finish or stop it first.",
    },
    "cancelled": {
        "message": "Backup stopped by user",
        "hint": "",
    },
    "archive_failed": {
        "message": "Failed to build the backup archive",
        "hint": "Check free disk space in the data directory and try again.",
    },
    "browser_unavailable": {
        "message": "Browser page not available",
        "hint": "Reload the configurator tab (F5) and try again.",
    },
    "screenshot_failed": {
        "message": "Failed to capture screenshot",
        "hint": "The browser window may be minimized or covered. Keep the configurator tab visible during the backup.",
    },
    "cli_failed": {
        "message": "CLI extraction failed",
        "hint": "Open the CLI tab manually once to make sure the terminal initializes, then retry.",
    },
    "timeout": {
        "message": "Operation timed out",
        "hint": "The flight controller may be slow to respond. Retry the backup.",
    },
    "invalid_options": {
        "message": "Invalid backup options",
        "hint": "Select at least one backup option, and at least one tab when screenshots are enabled.",
    },
}


def get_error_with_hint(error_type: str, original_message: str = "") -> dict:
    """
    Get error message with troubleshooting hint.

    Args:
        error_type: Key from ERROR_HINTS dictionary
        original_message: Original error message to include

    Returns:
        Dict with error and hint
    """
    hint_info = ERROR_HINTS.get(error_type, {})
    return {
        "error": original_message or hint_info.get("message", "Unknown error"),
        "hint": hint_info.get("hint", ""),
    }


def classify_error(error_message: str) -> str:
    """
    Classify an error message to determine the appropriate hint type.

    Args:
        error_message: The error message to classify

    Returns:
        Error type key for ERROR_HINTS lookup
    """
    msg = error_message.lower()

    if "connection lost" in msg or "disconnected" in msg:
        return "device_disconnected"
    if "navigation not found" in msg:
        return "navigation_not_found"
    if "already running" in msg:
        return "already_running"
    if "stopped by user" in msg:
        return "cancelled"
    if "zip" in msg or "archive" in msg:
        return "archive_failed"
    if "target closed" in msg or "page closed" in msg or "browser has been closed" in msg:
        return "browser_unavailable"
    if "screenshot" in msg or "capture" in msg:
        return "screenshot_failed"
    if "cli" in msg or "terminal" in msg:
        return "cli_failed"
    if "timeout" in msg or "timed out" in msg:
        return "timeout"
    if "select at least" in msg:
        return "invalid_options"

    return ""


class BackupError(Exception):
    """Base exception for all backup errors"""

    def __init__(
        self,
        message: str,
        code: str = "BACKUP_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class BackupAlreadyRunningError(BackupError):
    """Raised when a second run is requested while one is active"""

    def __init__(self):
        super().__init__("Backup is already running.", code="ALREADY_RUNNING")


class DeviceDisconnectedError(BackupError):
    """Raised when the connectivity probe reports the device as disconnected"""

    def __init__(self, message: str = "Connection lost - backup aborted.", checkpoint: Optional[str] = None):
        super().__init__(message, code="DEVICE_DISCONNECTED", details={"checkpoint": checkpoint})


class NavigationNotFoundError(BackupError):
    """Raised when no navigable panels appear after all discovery attempts"""

    def __init__(self, attempts: int = 0):
        super().__init__(
            "Navigation not found - is the drone connected?",
            code="NAVIGATION_NOT_FOUND",
            details={"attempts": attempts},
        )


class ArchiveError(BackupError):
    """Raised when the archive cannot be written or packaged"""

    def __init__(self, message: str):
        super().__init__(message, code="ARCHIVE_ERROR")


class BackupCancelledError(BackupError):
    """Raised at a cooperative cancellation point (user initiated, not a failure)"""

    def __init__(self, message: str = "Backup stopped by user."):
        super().__init__(message, code="CANCELLED")


class InvalidOptionsError(BackupError):
    """Raised when a start request has nothing to capture"""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_OPTIONS")


def create_error_response(
    error: Exception,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    include_traceback: bool = False,
) -> JSONResponse:
    """
    Create a standardized error response

    Args:
        error: The exception that occurred
        status_code: HTTP status code
        include_traceback: Include full traceback in response (debug only)

    Returns:
        JSONResponse with error details
    """
    error_response = {
        "success": False,
        "error": {"message": str(error), "type": error.__class__.__name__},
    }

    if isinstance(error, BackupError):
        error_response["error"]["code"] = error.code
        error_response["error"]["details"] = error.details

    hint = get_error_with_hint(classify_error(str(error)))["hint"]
    if hint:
        error_response["error"]["hint"] = hint

    if include_traceback:
        error_response["error"]["traceback"] = traceback.format_exc()

    if status_code >= 500:
        logger.error(f"{error.__class__.__name__}: {error}", exc_info=True)
    else:
        logger.warning(f"{error.__class__.__name__}: {error}")

    return JSONResponse(status_code=status_code, content=error_response)


def handle_api_error(error: Exception) -> JSONResponse:
    """
    Handle API errors with appropriate status codes

    Args:
        error: The exception to handle

    Returns:
        JSONResponse with appropriate status code
    """
    if isinstance(error, BackupAlreadyRunningError):
        return create_error_response(error, status.HTTP_409_CONFLICT)

    elif isinstance(error, (InvalidOptionsError, ValueError)):
        return create_error_response(error, status.HTTP_400_BAD_REQUEST)

    elif isinstance(error, FileNotFoundError):
        return create_error_response(error, status.HTTP_404_NOT_FOUND)

    elif isinstance(error, DeviceDisconnectedError):
        return create_error_response(error, status.HTTP_503_SERVICE_UNAVAILABLE)

    else:
        return create_error_response(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


def get_user_friendly_message(error: Exception) -> str:
    """
    Get a user-friendly error message for status display

    Args:
        error: The exception

    Returns:
        User-friendly error message
    """
    if isinstance(error, BackupError):
        return error.message

    hint_type = classify_error(str(error))
    if hint_type == "browser_unavailable":
        return "Could not reach the configurator page. Please RELOAD the Betaflight tab (F5) and try again."

    return f"An unexpected error occurred: {str(error)}"


def create_success_response(
    data: Any = None,
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a standardized success response

    Returns:
        Dict with success response format: {success: True, data: ..., message: ...}
    """
    response = {"success": True}

    if data is not None:
        response["data"] = data

    if message is not None:
        response["message"] = message

    return response
