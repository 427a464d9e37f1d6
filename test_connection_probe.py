"""
Tests for the layered connection heuristics.
"""

import asyncio

import pytest

from backup_models import ConnectionState
from conftest import FakeBridge
from utils.connection_probe import ensure_connected, evaluate_connection, probe_connection
from utils.error_handler import DeviceDisconnectedError


@pytest.mark.parametrize("snapshot,expected", [
    ({"bem_button": True}, ConnectionState.CONNECTED),
    ({"bem_button": False, "nav_items": 12, "nav_visible": True}, ConnectionState.DISCONNECTED),
    ({"bem_button": None, "classic_button": False}, ConnectionState.DISCONNECTED),
    ({"bem_button": None, "classic_button": True}, ConnectionState.CONNECTED),
    ({"active_indicator": True}, ConnectionState.CONNECTED),
    ({"nav_items": 12, "nav_visible": True}, ConnectionState.CONNECTED),
    ({"nav_items": 12, "nav_visible": False}, ConnectionState.UNKNOWN),
    ({"nav_items": 0, "nav_visible": True}, ConnectionState.UNKNOWN),
    ({}, ConnectionState.UNKNOWN),
    (None, ConnectionState.UNKNOWN),
])
def test_first_decisive_heuristic_wins(snapshot, expected):
    assert evaluate_connection(snapshot) == expected


def test_snapshot_failure_counts_as_unknown():
    class BrokenBridge(FakeBridge):
        async def get_connection_snapshot(self):
            raise RuntimeError("Execution context was destroyed")

    assert asyncio.run(probe_connection(BrokenBridge())) == ConnectionState.UNKNOWN


def test_ensure_connected_raises_only_on_explicit_disconnect():
    bridge = FakeBridge(panels=[("tab_setup", "Setup")])

    assert asyncio.run(ensure_connected(bridge, "start")) == ConnectionState.CONNECTED

    bridge.connected = None
    assert asyncio.run(ensure_connected(bridge, "start")) == ConnectionState.UNKNOWN

    bridge.connected = False
    with pytest.raises(DeviceDisconnectedError) as exc:
        asyncio.run(ensure_connected(bridge, "panel_tab_setup", "Connection lost!"))
    assert exc.value.message == "Connection lost!"
    assert exc.value.details["checkpoint"] == "panel_tab_setup"
