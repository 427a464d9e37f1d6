"""
Betaflight Backup - Panel Capture Unit
Captures one configurator tab, including its sub-tabs and scrolled content.

For each (sub-)tab the scroll container is measured. Short content gets a
single capture; anything taller is captured page by page while scrolling,
and the parts are stitched using the scroll distance the browser actually
applied at each step.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, Tuple

from backup_models import BackupTimings, CapturedAsset, NamingContext, PanelDescriptor, RunState
from screenshot_stitcher import ScreenshotStitcher
from utils.error_handler import BackupError
from utils.retry import constant_delay, retry_call

logger = logging.getLogger(__name__)

# Sub-tab containers, most specific first. Only these structural selectors
# are clicked: generic heuristics could hit buttons that change FC state.
SUB_PANEL_SELECTORS = [
    '#content .tab-container .tab',
    '#content .tab_container .tab',
    '#content .tab-container > div',
    '#content .tab_container > div',
    '.tab-content-header .tab',
    '#content [role="tablist"] [role="tab"]',
    '#content .subtab',
    '#content .sub-tab',
    '#content .tabs .tab',
    '#content .tabs > a',
    '#content .tabs > div',
    '#content .tabs > button',
]

SCROLL_THRESHOLD_PX = 100
BOTTOM_TOLERANCE_PX = 5
MAX_SCROLL_PARTS = 40


class PanelCaptureUnit:
    """Scroll-and-capture of a single panel and its sub-panels"""

    def __init__(
        self,
        bridge,
        capture_service,
        emit: Callable[[CapturedAsset], None],
        run_state: RunState,
        reporter,
        timings: Optional[BackupTimings] = None,
        stitcher: Optional[ScreenshotStitcher] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bridge = bridge
        self.capture_service = capture_service
        self.emit = emit
        self.run_state = run_state
        self.reporter = reporter
        self.timings = timings or BackupTimings()
        self.stitcher = stitcher or ScreenshotStitcher()
        self._sleep = sleep

        self.stitch_count = 0

    async def _script(self, description: str, call, *args):
        """Run a bridge script helper, retrying when the page throws"""
        return await retry_call(
            lambda attempt: call(*args),
            attempts=self.timings.script_attempts,
            delay=constant_delay(self.timings.script_retry_delay),
            description=f"[PanelCapture] {description}",
            propagate=(BackupError,),
            sleep=self._sleep,
        )

    # === Sub-panels ===

    async def find_sub_panels(self) -> Tuple[Optional[str], int]:
        """
        Find the first sub-panel selector with more than one visible match.

        Returns:
            (selector, count), or (None, 0) when the panel has no sub-panels
        """
        for selector in SUB_PANEL_SELECTORS:
            count = await self._script("Count sub-tabs", self.bridge.count_visible, selector)
            if count > 1:
                logger.debug(f"[PanelCapture] {count} sub-tabs via '{selector}'")
                return selector, count
        return None, 0

    async def count_sub_panels(self) -> int:
        _, count = await self.find_sub_panels()
        return count

    async def click_sub_panel(self, index: int) -> bool:
        """Re-locate sub-panels from the live DOM and click the one at ``index``"""
        selector, count = await self.find_sub_panels()
        if selector is None or count <= index:
            logger.warning(f"[PanelCapture] Sub-tab {index} not found ({count} available)")
            return False
        try:
            return await self._script(f"Click sub-tab {index}", self.bridge.click_nth_visible, selector, index)
        except BackupError:
            raise
        except Exception as e:
            logger.warning(f"[PanelCapture] Sub-tab {index} click failed: {e}")
            return False

    async def _sub_panel_label(self, index: int) -> str:
        selector, _ = await self.find_sub_panels()
        if selector is None:
            return ""
        texts = await self._script("Read sub-tab labels", self.bridge.visible_texts, selector)
        return texts[index] if index < len(texts) else ""

    # === Panel ===

    async def capture_panel(self, panel: PanelDescriptor, naming: NamingContext):
        """Capture every sub-tab of the current panel, or the panel itself"""
        label = panel.display_label or naming.english_name
        try:
            _, count = await self.find_sub_panels()
        except BackupError:
            raise
        except Exception as e:
            self.reporter.warning(f"WARNING: Could not read {label} ({e}), skipping.")
            return

        if count > 1:
            for i in range(count):
                self.run_state.check_cancelled()
                try:
                    sub_label = await self._sub_panel_label(i)
                except BackupError:
                    raise
                except Exception:
                    sub_label = ""
                self.reporter.update(f"{label} > {sub_label or f'Sub-tab {i + 1}'}...")
                if not await self.click_sub_panel(i):
                    continue
                await self._sleep(self.timings.sub_panel_settle)
                await self.capture_and_save(naming.folder, f"{naming.prefix}_{i + 1:02d}_SubTab{i + 1}")
        else:
            self.reporter.update(f"Screenshot: {label}...")
            await self.capture_and_save(naming.folder, f"{naming.prefix}_01_{naming.english_name}")

    # === Scroll capture ===

    @asynccontextmanager
    async def hidden_bottom_overlays(self):
        """Hide sticky bottom bars for the duration of a multi-part capture"""
        try:
            hidden = await self._script("Hide bottom overlays", self.bridge.hide_bottom_overlays)
            if hidden:
                logger.debug(f"[PanelCapture] Hid {hidden} bottom overlay(s)")
            yield hidden
        finally:
            try:
                await self._script("Restore bottom overlays", self.bridge.restore_bottom_overlays)
            except Exception as e:
                logger.error(f"[PanelCapture] Failed to restore bottom overlays: {e}")

    async def capture_and_save(self, folder: str, base_name: str) -> int:
        """
        Capture the current view (scrolling if needed) and emit it.

        A page script that keeps failing skips this asset with a warning;
        the rest of the run carries on.

        Returns:
            Number of assets emitted (0 when every capture failed)
        """
        try:
            return await self._capture_view(folder, base_name)
        except BackupError:
            raise
        except Exception as e:
            self.reporter.warning(f"WARNING: Capture of {base_name} failed ({e}), skipping.")
            return 0

    async def _capture_view(self, folder: str, base_name: str) -> int:
        await self._script("Scroll to top", self.bridge.set_scroll_top, 0)
        await self._sleep(self.timings.scroll_reset_settle)

        metrics = await self._script("Read scroll metrics", self.bridge.get_scroll_metrics)
        max_scroll = metrics["scroll_height"] - metrics["client_height"]

        if max_scroll <= SCROLL_THRESHOLD_PX:
            data = await self.capture_service.capture()
            if not data:
                self.reporter.warning(f"WARNING: Screenshot failed for {base_name}")
                return 0
            self._emit_image(folder, f"{base_name}.jpg", data)
            return 1

        async with self.hidden_bottom_overlays():
            # Layout may shift once the overlays are gone
            await self._script("Scroll to top", self.bridge.set_scroll_top, 0)
            await self._sleep(self.timings.scroll_remeasure_settle)
            parts, deltas = await self._scroll_capture(base_name)

        if not parts:
            return 0
        if len(parts) == 1:
            self._emit_image(folder, f"{base_name}.jpg", parts[0])
            return 1

        viewport_width = await self._script("Read viewport width", self.bridge.get_viewport_width)
        stitched = self.stitcher.stitch_to_jpeg(parts, deltas[:len(parts) - 1], viewport_width)
        if stitched is not None:
            self.stitch_count += 1
            self._emit_image(folder, f"{base_name}.jpg", stitched)
            return 1

        logger.warning(f"[PanelCapture] Stitch failed for {base_name}, saving {len(parts)} parts")
        for i, part in enumerate(parts, start=1):
            self._emit_image(folder, f"{base_name}_part{i}.jpg", part)
        return len(parts)

    async def _scroll_capture(self, base_name: str) -> Tuple[List[bytes], List[float]]:
        parts: List[bytes] = []
        deltas: List[float] = []

        while len(parts) < MAX_SCROLL_PARTS:
            self.run_state.check_cancelled()
            data = await self.capture_service.capture()
            if not data:
                self.reporter.warning(f"WARNING: Screenshot failed for {base_name}")
                break
            parts.append(data)

            metrics = await self._script("Read scroll metrics", self.bridge.get_scroll_metrics)
            scroll_top = metrics["scroll_top"]
            if scroll_top + metrics["client_height"] >= metrics["scroll_height"] - BOTTOM_TOLERANCE_PX:
                break

            actual = await self._script("Scroll", self.bridge.set_scroll_top, scroll_top + metrics["client_height"])
            await self._sleep(self.timings.scroll_step_settle)
            metrics = await self._script("Read scroll metrics", self.bridge.get_scroll_metrics)
            delta = metrics["scroll_top"] - scroll_top
            if delta <= 0:
                logger.warning(f"[PanelCapture] Scroll stuck at {actual}, stopping")
                break
            deltas.append(delta)

        logger.debug(f"[PanelCapture] {base_name}: {len(parts)} parts, deltas={deltas}")
        return parts, deltas

    def _emit_image(self, folder: str, file_name: str, data: bytes):
        self.emit(CapturedAsset(folder_name=folder, file_name=file_name, payload=data, is_binary=True))
