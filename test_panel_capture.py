"""
Tests for PanelCaptureUnit: single captures, scroll stitching, sub-tabs,
overlay restore and part fallback.
"""

import asyncio
import io

import pytest
from PIL import Image

from backup_models import NamingContext, PanelDescriptor
from capture_service import CaptureService
from conftest import FakeBridge, FakePage
from panel_capture import PanelCaptureUnit
from utils.error_handler import BackupCancelledError

NAMING = NamingContext(folder="03_Motors", prefix="03", english_name="Motors", label="Motors")
PANEL = PanelDescriptor(structural_class="tab_motors", display_label="Motoren")


def make_unit(bridge, run_state, reporter, timings, assets, stitcher=None):
    capture = CaptureService.from_timings(bridge, timings)
    return PanelCaptureUnit(bridge, capture, assets.append, run_state, reporter, timings=timings, stitcher=stitcher)


def open_panel(bridge, page):
    bridge.panels = [("tab_motors", "Motoren")]
    bridge.pages["tab_motors"] = page
    bridge.current_panel = "tab_motors"


def test_short_panel_gets_single_capture(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(scroll_height=680, client_height=600))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    asyncio.run(unit.capture_panel(PANEL, NAMING))

    assert [(a.folder_name, a.file_name) for a in assets] == [("03_Motors", "03_01_Motors.jpg")]
    assert assets[0].is_binary
    assert bridge.capture_calls == 1
    assert bridge.overlay_events == []
    assert unit.stitch_count == 0


@pytest.mark.parametrize("scale", [1.0, 2.0])
def test_scrollable_panel_is_stitched_from_measured_deltas(run_state, reporter, timings, assets, scale):
    # 400px viewport over 1180px content: captures at 0, 400 and 780 (clamped)
    bridge = FakeBridge(device_scale=scale)
    open_panel(bridge, FakePage(scroll_height=1180, client_height=400))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert bridge.capture_calls == 3
    assert len(assets) == 1
    image = Image.open(io.BytesIO(assets[0].payload))
    expected = round(400 * scale) + round(400 * scale) + round(380 * scale)
    assert image.size == (round(1000 * scale), expected)
    assert unit.stitch_count == 1


def test_overlays_hidden_only_for_multi_part_and_always_restored(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(scroll_height=1500, client_height=600))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert bridge.overlay_events == ["hide", "restore"]
    assert not bridge.overlays_hidden


def test_overlays_restored_on_cancellation(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(scroll_height=3000, client_height=600))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    original_capture = bridge.capture_viewport

    async def cancelling_capture(timeout=10.0):
        run_state.request_cancel()
        return await original_capture(timeout)

    bridge.capture_viewport = cancelling_capture

    with pytest.raises(BackupCancelledError):
        asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert bridge.overlay_events == ["hide", "restore"]
    assert assets == []


def test_stitch_failure_falls_back_to_parts(run_state, reporter, timings, assets):
    class BrokenStitcher:
        def stitch_to_jpeg(self, images, deltas, viewport_width):
            return None

    bridge = FakeBridge()
    open_panel(bridge, FakePage(scroll_height=1180, client_height=400))
    unit = make_unit(bridge, run_state, reporter, timings, assets, stitcher=BrokenStitcher())

    emitted = asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert emitted == 3
    assert [a.file_name for a in assets] == [
        "03_01_Motors_part1.jpg",
        "03_01_Motors_part2.jpg",
        "03_01_Motors_part3.jpg",
    ]


def test_failed_capture_is_skipped_with_warning(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    bridge.capture_always_fail = True
    open_panel(bridge, FakePage())
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    emitted = asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert emitted == 0
    assert assets == []
    assert any("Screenshot failed" in w for w in reporter.warnings)


def test_sub_panels_are_each_clicked_and_captured(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(sub_panels=["Motors", "Mixer", "ESC"]))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    asyncio.run(unit.capture_panel(PANEL, NAMING))

    assert [a.file_name for a in assets] == [
        "03_01_SubTab1.jpg",
        "03_02_SubTab2.jpg",
        "03_03_SubTab3.jpg",
    ]
    assert bridge.sub_panel_clicks == [("tab_motors", 0), ("tab_motors", 1), ("tab_motors", 2)]


def test_first_selector_with_multiple_matches_wins(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(sub_panels=["A", "B"], sub_panel_selector='#content .subtab'))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    selector, count = asyncio.run(unit.find_sub_panels())

    assert selector == '#content .subtab'
    assert count == 2


def test_single_sub_panel_match_is_not_treated_as_sub_panels(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(sub_panels=["Only"]))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    asyncio.run(unit.capture_panel(PANEL, NAMING))

    assert [a.file_name for a in assets] == ["03_01_Motors.jpg"]
    assert bridge.sub_panel_clicks == []


def test_click_sub_panel_out_of_range_returns_false(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(sub_panels=["A", "B"]))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    assert asyncio.run(unit.click_sub_panel(5)) is False


def test_transient_script_error_is_retried(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(scroll_height=1180, client_height=400))
    bridge.script_faults = {"get_scroll_metrics": [2], "set_scroll_top": [1]}
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    emitted = asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert emitted == 1
    assert unit.stitch_count == 1
    assert reporter.warnings == []


def test_persistent_script_error_skips_asset_with_warning(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage(scroll_height=1500, client_height=600))
    bridge.script_faults = {"get_scroll_metrics": list(range(2, 10))}
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    emitted = asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert emitted == 0
    assert assets == []
    assert any("03_01_Motors" in w for w in reporter.warnings)
    assert bridge.overlay_events[-1] == "restore"
    assert not bridge.overlays_hidden


def test_overlays_restored_when_hiding_raises_midway(run_state, reporter, timings, assets):
    class HalfHidingBridge(FakeBridge):
        async def hide_bottom_overlays(self):
            self.overlay_events.append("hide")
            self.overlays_hidden = True
            raise RuntimeError("Execution context was destroyed")

    bridge = HalfHidingBridge()
    open_panel(bridge, FakePage(scroll_height=1500, client_height=600))
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    emitted = asyncio.run(unit.capture_and_save("03_Motors", "03_01_Motors"))

    assert emitted == 0
    assert bridge.overlay_events[-1] == "restore"
    assert not bridge.overlays_hidden


def test_sub_panel_lookup_error_skips_panel(run_state, reporter, timings, assets):
    bridge = FakeBridge()
    open_panel(bridge, FakePage())
    bridge.script_faults = {"count_visible": list(range(1, 10))}
    unit = make_unit(bridge, run_state, reporter, timings, assets)

    asyncio.run(unit.capture_panel(PANEL, NAMING))

    assert assets == []
    assert any("Motoren" in w for w in reporter.warnings)
