"""
Betaflight Backup - Variant Cycling Unit
Captures the PID tuning tab once per PID profile and once per rate profile.

Switching profiles changes which profile is active on the flight
controller, so the selection seen before cycling is always put back, even
when a capture fails or the run is cancelled mid-cycle.

Sub-tab layout on the PID tuning tab:
    0 - PID settings (per PID profile)
    1 - Rates (per rate profile)
    2 - Filters (global)
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from backup_models import BackupTimings, NamingContext, PanelDescriptor, RunState, VariantAxis, VariantKind
from panel_capture import PanelCaptureUnit
from utils.element_finder import SelectLocator
from utils.retry import linear_backoff, retry_async

logger = logging.getLogger(__name__)

PID_SUB_PANEL = 0
RATES_SUB_PANEL = 1
FILTER_SUB_PANEL = 2


class VariantCyclingUnit:
    """Cycles PID and rate profiles with verified switching and guaranteed restore"""

    def __init__(
        self,
        bridge,
        panel_unit: PanelCaptureUnit,
        run_state: RunState,
        reporter,
        timings: Optional[BackupTimings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bridge = bridge
        self.panel_unit = panel_unit
        self.run_state = run_state
        self.reporter = reporter
        self.timings = timings or BackupTimings()
        self._sleep = sleep
        self.locators = {kind: SelectLocator.for_kind(kind) for kind in VariantKind}

    # === Locating ===

    async def locate_axes(self) -> Tuple[Optional[VariantAxis], Optional[VariantAxis]]:
        """Find the PID and rate profile selects on the current page"""
        try:
            selects = await self.bridge.get_select_snapshot() or []
        except Exception as e:
            logger.warning(f"[VariantCycler] Select snapshot failed: {e}")
            return None, None

        primary = self._locate(VariantKind.PRIMARY, selects, exclude=())
        exclude = (primary.selector,) if primary else ()
        secondary = self._locate(VariantKind.SECONDARY, selects, exclude=exclude)
        return primary, secondary

    def _locate(self, kind: VariantKind, selects, exclude) -> Optional[VariantAxis]:
        match = self.locators[kind].locate(selects, exclude=exclude)
        if not match.found:
            return None
        return VariantAxis(
            kind=kind,
            selector=match.selector,
            options=list(match.element.get("options") or []),
            guessed=match.guessed,
        )

    # === Switching ===

    async def set_value_verified(self, axis: VariantAxis, value: str) -> bool:
        """
        Set a select and confirm the page kept the value.

        The configurator can silently reject or delay a profile switch, so
        the value is read back after a short wait and the switch repeated
        (select_retries extra attempts, waits growing each time).

        Returns:
            True if the select reports ``value`` afterwards
        """
        target = str(value)

        async def attempt(n: int) -> bool:
            await self.bridge.set_select_value(axis.selector, target)
            await self._sleep(self.timings.select_verify_wait)
            actual = await self.bridge.get_select_value(axis.selector)
            if actual == target:
                return True
            logger.warning(f"[VariantCycler] {axis.kind.value} verify failed (got '{actual}', want '{target}')")
            return False

        ok = await retry_async(
            attempt,
            attempts=self.timings.select_retries + 1,
            delay=linear_backoff(self.timings.select_retry_wait),
            description=f"[VariantCycler] Set {axis.kind.value}={target}",
            sleep=self._sleep,
        )
        return bool(ok)

    # === Cycling ===

    async def cycle_variants(self, panel: PanelDescriptor, naming: NamingContext):
        """Capture the PID tuning tab per profile, then restore the original profiles"""
        sub_count = await self.panel_unit.count_sub_panels()
        primary, secondary = await self.locate_axes()
        logger.info(
            f"[VariantCycler] {sub_count} sub-tabs, PID profiles: {len(primary.options) if primary else 0}, "
            f"rate profiles: {len(secondary.options) if secondary else 0}"
        )

        if primary is None or len(primary.options) < 2:
            logger.info("[VariantCycler] No usable PID profile selector, capturing tab normally")
            await self.panel_unit.capture_panel(panel, naming)
            return

        for axis in (primary, secondary):
            if axis is not None and axis.guessed:
                self.reporter.warning(
                    f"WARNING: {axis.kind.value} selector only found by position ({axis.selector}), "
                    f"profile captures may show the wrong setting"
                )

        axes = [a for a in (primary, secondary) if a is not None]
        for axis in axes:
            axis.record_original(await self._read_value(axis))
            logger.info(f"[VariantCycler] {axis.kind.value}: {len(axis.options)} options, current '{axis.original_value}'")

        try:
            await self._cycle_axis(primary, PID_SUB_PANEL, naming, "PID Profile", "PID_Profile")

            if sub_count > RATES_SUB_PANEL:
                if secondary is not None and len(secondary.options) > 1:
                    await self._cycle_axis(secondary, RATES_SUB_PANEL, naming, "Rate Profile", "Rates_Profile")
                else:
                    self.run_state.check_cancelled()
                    await self._capture_sub_panel(RATES_SUB_PANEL, naming, f"{naming.prefix}_Rates")

            if sub_count > FILTER_SUB_PANEL:
                self.run_state.check_cancelled()
                self.reporter.update("Filter settings...")
                await self._capture_sub_panel(FILTER_SUB_PANEL, naming, f"{naming.prefix}_Filter")
        finally:
            await self.restore(axes)

    async def _cycle_axis(self, axis: VariantAxis, sub_index: int, naming: NamingContext, label: str, file_tag: str):
        total = len(axis.options)
        for i, value in enumerate(axis.options, start=1):
            self.run_state.check_cancelled()
            self.reporter.update(f"{label} {i}/{total}...")
            logger.info(f"[VariantCycler] Switching {axis.kind.value} to '{value}' (option {i})")

            if not await self.set_value_verified(axis, value):
                self.reporter.warning(f"WARNING: Could not switch {label} {i}, capturing current state")
            await self._sleep(self.timings.variant_settle)

            await self._capture_sub_panel(sub_index, naming, f"{naming.prefix}_{file_tag}{i}")

    async def _capture_sub_panel(self, index: int, naming: NamingContext, base_name: str):
        await self.panel_unit.click_sub_panel(index)
        await self._sleep(self.timings.variant_sub_panel_settle)
        await self.panel_unit.capture_and_save(naming.folder, base_name)

    async def _read_value(self, axis: VariantAxis) -> Optional[str]:
        value = await self.bridge.get_select_value(axis.selector)
        return None if value is None else str(value)

    # === Restore ===

    async def restore(self, axes: List[VariantAxis]) -> bool:
        """
        Put every axis back to its recorded original value.

        Runs regardless of cancellation. A failure on one axis does not stop
        the others from being restored.

        Returns:
            True if every axis reports its original value afterwards
        """
        self.reporter.update("Restoring original profiles...")
        all_ok = True
        for axis in axes:
            if axis.original_value is None:
                logger.warning(f"[VariantCycler] No original value for {axis.kind.value}, nothing to restore")
                continue
            try:
                ok = await self.set_value_verified(axis, axis.original_value)
            except Exception as e:
                logger.error(f"[VariantCycler] Restore of {axis.kind.value} raised: {e}")
                ok = False
            if not ok:
                all_ok = False
                self.reporter.warning(
                    f"WARNING: Could not restore {axis.kind.value} to '{axis.original_value}', check it manually"
                )
            await self._sleep(self.timings.restore_settle)
        if all_ok:
            logger.info("[VariantCycler] Original profiles restored")
        return all_ok
