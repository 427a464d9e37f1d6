"""
Betaflight Backup - Preferences Manager
Persists the last used backup options and tab selection as JSON.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from backup_models import CaptureOptions, Preferences
from utils.error_handler import InvalidOptionsError

logger = logging.getLogger(__name__)

# Tabs offered for selection, with their default on/off state
KNOWN_PANELS: List[Dict] = [
    {"cls": "tab_setup", "label": "Setup", "on": True},
    {"cls": "tab_ports", "label": "Ports", "on": True},
    {"cls": "tab_configuration", "label": "Config", "on": True},
    {"cls": "tab_power", "label": "Power", "on": True},
    {"cls": "tab_failsafe", "label": "Failsafe", "on": True},
    {"cls": "tab_pid_tuning", "label": "PID", "on": True},
    {"cls": "tab_receiver", "label": "Receiver", "on": True},
    {"cls": "tab_modes", "label": "Modes", "on": True},
    {"cls": "tab_adjustments", "label": "Adjust", "on": False},
    {"cls": "tab_servos", "label": "Servos", "on": False},
    {"cls": "tab_motors", "label": "Motors", "on": True},
    {"cls": "tab_osd", "label": "OSD", "on": True},
    {"cls": "tab_vtx", "label": "VTX", "on": False},
    {"cls": "tab_led_strip", "label": "LEDs", "on": False},
    {"cls": "tab_sensors", "label": "Sensors", "on": False},
    {"cls": "tab_gps", "label": "GPS", "on": False},
    {"cls": "tab_logging", "label": "Blackbox", "on": True},
]


def default_tab_selections() -> Dict[str, bool]:
    return {panel["cls"]: panel["on"] for panel in KNOWN_PANELS}


def validate_options(options: CaptureOptions):
    """
    Reject runs that would capture nothing.

    Raises:
        InvalidOptionsError: No category enabled, or screenshots enabled
            with an empty tab selection
    """
    if not options.include_screenshots and not options.include_console_dump:
        raise InvalidOptionsError("Select at least one backup option!")
    if options.include_screenshots and not options.selected_panels:
        raise InvalidOptionsError("Select at least one tab for screenshots!")


class PreferencesManager:
    """Load/save of Preferences in <data_dir>/preferences.json"""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[Preferences] Initialized with storage: {self.data_dir}")

    def _get_preferences_file(self) -> Path:
        return self.data_dir / "preferences.json"

    def load(self) -> Preferences:
        """Saved preferences, with defaults for anything missing"""
        prefs_file = self._get_preferences_file()
        data: Dict = {}

        if prefs_file.exists():
            try:
                with open(prefs_file, "r") as f:
                    data = json.load(f)
            except Exception as e:
                logger.error(f"[Preferences] Failed to load {prefs_file}: {e}")
                data = {}

        selections = default_tab_selections()
        selections.update(data.get("tab_selections") or {})
        data["tab_selections"] = selections

        try:
            return Preferences(**data)
        except Exception as e:
            logger.error(f"[Preferences] Invalid preferences file, using defaults: {e}")
            return Preferences(tab_selections=default_tab_selections())

    def save(self, prefs: Preferences):
        prefs_file = self._get_preferences_file()
        with open(prefs_file, "w") as f:
            json.dump(prefs.dict(), f, indent=2)
        logger.debug(f"[Preferences] Saved to {prefs_file}")

    def update(
        self,
        screenshots: Optional[bool] = None,
        cli: Optional[bool] = None,
        profiles: Optional[bool] = None,
        tab_selections: Optional[Dict[str, bool]] = None,
    ) -> Preferences:
        """Merge the given fields into the saved preferences and persist them"""
        prefs = self.load()
        if screenshots is not None:
            prefs.screenshots = screenshots
        if cli is not None:
            prefs.cli = cli
        if profiles is not None:
            prefs.profiles = profiles
        if tab_selections:
            prefs.tab_selections.update(tab_selections)
        self.save(prefs)
        logger.info(f"[Preferences] Updated ({len(prefs.selected_panels())} tabs selected)")
        return prefs
