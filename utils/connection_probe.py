"""
Connection Probe - Infers flight controller connectivity from the page.

The configurator does not expose its serial state directly, so
connectivity is read off structural markers in a DOM snapshot
(``page_scripts.CONNECTION_SNAPSHOT``). Heuristics are tried in order and
the first one that has an opinion decides:

1. BEM connect button (newer configurator): ``active`` class
2. Classic connect button: ``active`` class
3. Any element whose classes contain both "connect" and "active"
4. Connected-mode navigation visible

No indicator at all yields UNKNOWN, which callers treat as connected.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from backup_models import ConnectionState
from utils.error_handler import DeviceDisconnectedError

logger = logging.getLogger(__name__)

ConnectionSnapshot = Dict[str, Any]
ConnectionHeuristic = Callable[[ConnectionSnapshot], Optional[ConnectionState]]


def _button_state(value: Any) -> Optional[ConnectionState]:
    if value is None:
        return None
    return ConnectionState.CONNECTED if value else ConnectionState.DISCONNECTED


def bem_button(snapshot: ConnectionSnapshot) -> Optional[ConnectionState]:
    return _button_state(snapshot.get("bem_button"))


def classic_button(snapshot: ConnectionSnapshot) -> Optional[ConnectionState]:
    return _button_state(snapshot.get("classic_button"))


def active_indicator(snapshot: ConnectionSnapshot) -> Optional[ConnectionState]:
    return ConnectionState.CONNECTED if snapshot.get("active_indicator") else None


def visible_navigation(snapshot: ConnectionSnapshot) -> Optional[ConnectionState]:
    if snapshot.get("nav_items", 0) > 0 and snapshot.get("nav_visible"):
        return ConnectionState.CONNECTED
    return None


HEURISTICS: List[Tuple[str, ConnectionHeuristic]] = [
    ("bem_button", bem_button),
    ("classic_button", classic_button),
    ("active_indicator", active_indicator),
    ("visible_navigation", visible_navigation),
]


def evaluate_connection(snapshot: Optional[ConnectionSnapshot]) -> ConnectionState:
    """Run the heuristics over a snapshot; first decisive one wins"""
    if not snapshot:
        return ConnectionState.UNKNOWN
    for name, heuristic in HEURISTICS:
        state = heuristic(snapshot)
        if state is not None:
            logger.debug(f"[ConnectionProbe] {name} -> {state.value}")
            return state
    return ConnectionState.UNKNOWN


async def probe_connection(bridge) -> ConnectionState:
    """Snapshot the page and evaluate it. Snapshot errors count as UNKNOWN."""
    try:
        snapshot = await bridge.get_connection_snapshot()
    except Exception as e:
        logger.warning(f"[ConnectionProbe] Snapshot failed: {e}")
        return ConnectionState.UNKNOWN
    return evaluate_connection(snapshot)


async def ensure_connected(bridge, checkpoint: str, message: str = "Connection lost - backup aborted.") -> ConnectionState:
    """
    Probe at a checkpoint and raise if the device is explicitly disconnected.

    Raises:
        DeviceDisconnectedError: When the probe reports DISCONNECTED
    """
    state = await probe_connection(bridge)
    if state == ConnectionState.DISCONNECTED:
        logger.error(f"[ConnectionProbe] Disconnected at checkpoint '{checkpoint}'")
        raise DeviceDisconnectedError(message, checkpoint=checkpoint)
    if state == ConnectionState.UNKNOWN:
        logger.warning(f"[ConnectionProbe] No connection indicator at '{checkpoint}', assuming connected")
    return state
