"""
Betaflight Backup - Backup Executor
Runs one complete backup: discover tabs, visit each, capture, package.

Phases:
    PREPARING -> DISCOVERING_PANELS -> CAPTURING -> FINALIZING
    -> COMPLETE | FAILED | CANCELLED

Only one run may be active at a time; a second start is rejected, not
queued. Whatever way a run ends, the heartbeat is stopped, the run state is
reset and exactly one terminal status event is published.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from archive_manager import ArchiveStore, BackupArchive, make_root_name
from backup_models import (
    BackupPhase,
    BackupResult,
    BackupTimings,
    CaptureOptions,
    NamingContext,
    PanelDescriptor,
    RunState,
)
from capture_service import CaptureService
from cli_extractor import TerminalExtractionUnit
from panel_capture import PanelCaptureUnit
from screenshot_stitcher import ScreenshotStitcher
from status_channel import RunReporter, StatusChannel
from utils.connection_probe import ensure_connected
from utils.error_handler import (
    BackupAlreadyRunningError,
    BackupCancelledError,
    BackupError,
    NavigationNotFoundError,
    get_user_friendly_message,
)
from utils.retry import constant_delay, retry_async, retry_call
from variant_cycler import VariantCyclingUnit

logger = logging.getLogger(__name__)

# Never visited: clicking inside these can change flight controller state
BLACKLIST = ("tab_landing", "tab_firmware_flasher", "tab_presets")

CLI_PANEL = "tab_cli"
PID_TUNING_PANEL = "tab_pid_tuning"

# Folder names keyed by tab class, independent of the UI language
PANEL_ENGLISH_NAMES: Dict[str, str] = {
    "tab_setup": "Setup",
    "tab_ports": "Ports",
    "tab_configuration": "Configuration",
    "tab_power": "Power",
    "tab_failsafe": "Failsafe",
    "tab_pid_tuning": "PID_Tuning",
    "tab_receiver": "Receiver",
    "tab_modes": "Modes",
    "tab_adjustments": "Adjustments",
    "tab_servos": "Servos",
    "tab_motors": "Motors",
    "tab_osd": "OSD",
    "tab_vtx": "VTX",
    "tab_led_strip": "LED_Strip",
    "tab_sensors": "Sensors",
    "tab_gps": "GPS",
    "tab_logging": "Blackbox",
    "tab_cli": "CLI",
}


def english_name_for(structural_class: str) -> str:
    """Known English folder name, else 'tab_foo_bar' -> 'Foo_Bar'"""
    if structural_class in PANEL_ENGLISH_NAMES:
        return PANEL_ENGLISH_NAMES[structural_class]
    words = structural_class.replace("tab_", "", 1).split("_")
    return "_".join(w[:1].upper() + w[1:] for w in words)


def make_naming(index: int, panel: PanelDescriptor) -> NamingContext:
    prefix = f"{index:02d}"
    english = english_name_for(panel.structural_class)
    return NamingContext(folder=f"{prefix}_{english}", prefix=prefix, english_name=english, label=panel.display_label)


def is_panel_included(structural_class: str, options: CaptureOptions) -> bool:
    if any(blocked in structural_class for blocked in BLACKLIST):
        return False
    if structural_class == CLI_PANEL:
        return options.include_console_dump
    if not options.include_screenshots:
        return False
    return not options.selected_panels or structural_class in options.selected_panels


def filter_panels(panels: List[PanelDescriptor], options: CaptureOptions) -> List[PanelDescriptor]:
    """Panels to visit, in discovery order"""
    return [p for p in panels if is_panel_included(p.structural_class, options)]


class Heartbeat:
    """Periodic no-op ping that keeps the browser session busy during a run"""

    def __init__(self, ping: Callable[[], Awaitable], interval: float = 20.0):
        self.ping = ping
        self.interval = interval
        self.beats = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(f"[Heartbeat] Started ({self.interval}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"[Heartbeat] Stopped after {self.beats} beats")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.ping()
                self.beats += 1
            except Exception as e:
                logger.debug(f"[Heartbeat] Ping failed: {e}")


class BackupExecutor:
    """
    Orchestrates a backup run over the configurator page.

    Owns the RunState; units read it for cooperative cancellation.
    """

    def __init__(
        self,
        bridge,
        status: StatusChannel,
        archive_store: ArchiveStore,
        timings: Optional[BackupTimings] = None,
        capture_service: Optional[CaptureService] = None,
        stitcher: Optional[ScreenshotStitcher] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bridge = bridge
        self.status = status
        self.archive_store = archive_store
        self.timings = timings or BackupTimings()
        self.capture_service = capture_service or CaptureService.from_timings(bridge, self.timings)
        self.stitcher = stitcher or ScreenshotStitcher()
        self._sleep = sleep
        self._clock = clock

        self.run_state = RunState()
        self.reporter: Optional[RunReporter] = None
        self.last_result: Optional[BackupResult] = None
        self._task: Optional[asyncio.Task] = None

        logger.info("[BackupExecutor] Initialized")

    # === Run control ===

    @property
    def is_running(self) -> bool:
        return self.run_state.running

    @property
    def phase(self) -> BackupPhase:
        return self.run_state.phase

    def _claim(self):
        if self.run_state.running:
            logger.warning("[BackupExecutor] Start rejected: backup already running")
            raise BackupAlreadyRunningError()
        self.run_state.begin()

    def start(self, options: CaptureOptions) -> asyncio.Task:
        """
        Start a run in the background.

        Raises:
            BackupAlreadyRunningError: If a run is active (checked synchronously)
        """
        self._claim()
        self._task = asyncio.create_task(self._execute(options))
        return self._task

    async def run(self, options: CaptureOptions) -> BackupResult:
        """Run a backup to completion in the caller's task"""
        self._claim()
        return await self._execute(options)

    async def wait(self) -> Optional[BackupResult]:
        if self._task is not None:
            return await self._task
        return self.last_result

    def request_cancel(self) -> bool:
        """Ask the active run to stop at its next cancellation point"""
        accepted = self.run_state.request_cancel()
        if accepted:
            logger.info("[BackupExecutor] Cancellation requested")
        return accepted

    def _set_phase(self, phase: BackupPhase):
        self.run_state.phase = phase
        if self.reporter is not None:
            self.reporter.set_phase(phase)

    # === Execution ===

    async def _execute(self, options: CaptureOptions) -> BackupResult:
        result = BackupResult(phase=BackupPhase.PREPARING)
        archive = BackupArchive(make_root_name())
        reporter = RunReporter(self.status, BackupPhase.PREPARING)
        self.reporter = reporter
        heartbeat = Heartbeat(self.bridge.ping, self.timings.heartbeat_interval)

        self.status.begin_run()
        heartbeat.start()
        logger.info(f"[BackupExecutor] Starting backup {archive.root_name} with options {options}")

        try:
            reporter.update("Starting backup...")
            self._set_phase(BackupPhase.PREPARING)
            await self._prepare()

            self._set_phase(BackupPhase.DISCOVERING_PANELS)
            panels = await self.discover_panels()
            selected = filter_panels(panels, options)
            total = len(selected)
            result.panels_total = total
            reporter.set_progress(0, total)
            logger.info(f"[BackupExecutor] Found {len(panels)} tabs, processing {total}")

            self._set_phase(BackupPhase.CAPTURING)
            units = self._build_units(archive.add, reporter)

            # Folder numbers only advance for panels that were opened
            folder_index = 1
            for index, panel in enumerate(selected, start=1):
                self.run_state.check_cancelled()
                await ensure_connected(self.bridge, f"panel_{panel.structural_class}")

                reporter.set_progress(index, total)
                naming = make_naming(folder_index, panel)
                reporter.update(f"Tab {index}/{total}: {panel.display_label or naming.english_name}")

                if not await self.open_panel(panel):
                    reporter.warning(f"WARNING: Link for {panel.structural_class} not found, skipping.")
                    continue
                await self._sleep(self.timings.panel_settle)
                folder_index += 1

                try:
                    await self.dispatch(panel, naming, options, units)
                except BackupError:
                    raise
                except Exception as e:
                    reporter.warning(f"WARNING: {naming.english_name} failed ({e}), skipping.")
                    logger.warning(f"[BackupExecutor] Unit error on {panel.structural_class}: {e}", exc_info=True)
                    continue
                result.panels_processed += 1

            reporter.set_progress(total, total)
            self._set_phase(BackupPhase.FINALIZING)
            reporter.update("Building ZIP...")
            self.archive_store.directory.mkdir(parents=True, exist_ok=True)
            archive.save(self.archive_store.directory)

            result.phase = BackupPhase.COMPLETE
            result.success = True
            result.archive_name = archive.file_name
            result.asset_count = archive.file_count
            result.message = f"{archive.file_name} is ready for download."
            self._set_phase(BackupPhase.COMPLETE)
            self.status.complete(result.message, reporter.progress)
            logger.info(f"[BackupExecutor] Backup complete: {archive.file_count} files in {archive.file_name}")

        except BackupCancelledError as e:
            archive.discard()
            result.phase = BackupPhase.CANCELLED
            result.message = e.message
            self._set_phase(BackupPhase.CANCELLED)
            self.status.cancelled(e.message, reporter.progress)
            logger.info(f"[BackupExecutor] {e.message}")

        except asyncio.CancelledError:
            archive.discard()
            result.phase = BackupPhase.CANCELLED
            result.message = "Backup task cancelled."
            self._set_phase(BackupPhase.CANCELLED)
            self.status.cancelled(result.message, reporter.progress)
            raise

        except BackupError as e:
            archive.discard()
            result.phase = BackupPhase.FAILED
            result.message = e.message
            self.status.error(self.run_state.phase, e.message, reporter.progress)
            self._set_phase(BackupPhase.FAILED)
            logger.error(f"[BackupExecutor] Backup failed ({e.code}): {e.message}")

        except Exception as e:
            archive.discard()
            result.phase = BackupPhase.FAILED
            result.message = get_user_friendly_message(e)
            self.status.error(self.run_state.phase, result.message, reporter.progress)
            self._set_phase(BackupPhase.FAILED)
            logger.error(f"[BackupExecutor] Backup error: {e}", exc_info=True)

        finally:
            await heartbeat.stop()
            self.run_state.reset()
            result.warnings = list(reporter.warnings)
            result.finished_at = datetime.now()
            self.last_result = result

        return result

    async def _prepare(self):
        if await self.bridge.enable_expert_mode():
            self.reporter.update("Enabling Expert Mode...")
            await self._sleep(self.timings.expert_mode_settle)

    async def discover_panels(self) -> List[PanelDescriptor]:
        """
        Visible navigation tabs, retried while the UI initializes.

        Raises:
            NavigationNotFoundError: When no tab appeared after every attempt
        """
        async def attempt(n: int) -> List[Dict[str, str]]:
            self.run_state.check_cancelled()
            found = await self.bridge.discover_panels() or []
            if not found and n < self.timings.discovery_attempts:
                self.reporter.update("Waiting for Betaflight UI...")
            return found

        raw = await retry_async(
            attempt,
            attempts=self.timings.discovery_attempts,
            delay=constant_delay(self.timings.discovery_retry_delay),
            description="[BackupExecutor] Tab discovery",
            propagate=(BackupCancelledError,),
            sleep=self._sleep,
        )
        panels = [
            PanelDescriptor(structural_class=item["cls"], display_label=item.get("label", ""))
            for item in (raw or [])
            if item.get("cls")
        ]
        if not panels:
            raise NavigationNotFoundError(self.timings.discovery_attempts)
        return panels

    def _build_units(self, emit, reporter: RunReporter) -> Dict[str, object]:
        panel_unit = PanelCaptureUnit(
            self.bridge, self.capture_service, emit, self.run_state, reporter,
            timings=self.timings, stitcher=self.stitcher, sleep=self._sleep,
        )
        return {
            "panel": panel_unit,
            "variants": VariantCyclingUnit(
                self.bridge, panel_unit, self.run_state, reporter, timings=self.timings, sleep=self._sleep,
            ),
            "cli": TerminalExtractionUnit(
                self.bridge, emit, self.run_state, reporter, timings=self.timings, sleep=self._sleep, clock=self._clock,
            ),
        }

    async def open_panel(self, panel: PanelDescriptor) -> bool:
        """Click the panel's navigation link. A link that keeps throwing counts as missing."""
        try:
            return await retry_call(
                lambda attempt: self.bridge.click_panel(panel.structural_class),
                attempts=self.timings.script_attempts,
                delay=constant_delay(self.timings.script_retry_delay),
                description=f"[BackupExecutor] Open {panel.structural_class}",
                propagate=(BackupError,),
                sleep=self._sleep,
            )
        except BackupError:
            raise
        except Exception as e:
            logger.warning(f"[BackupExecutor] Could not open {panel.structural_class}: {e}")
            return False

    async def dispatch(self, panel: PanelDescriptor, naming: NamingContext, options: CaptureOptions, units: Dict[str, object]):
        """Hand the current panel to the unit that knows how to capture it"""
        if panel.structural_class == CLI_PANEL:
            await units["cli"].extract()
        elif panel.structural_class == PID_TUNING_PANEL and options.include_variant_cycling:
            await units["variants"].cycle_variants(panel, naming)
        else:
            await units["panel"].capture_panel(panel, naming)
