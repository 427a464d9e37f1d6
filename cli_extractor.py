"""
Betaflight Backup - CLI Extractor
Runs ``diff all`` and ``dump all`` in the configurator's CLI tab and saves
their output.

The CLI is an xterm terminal that streams the flight controller's reply
without any end marker, so completion is detected by polling the buffer
until its length stops changing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from backup_models import BackupTimings, CapturedAsset, RunState
from utils.connection_probe import ensure_connected

logger = logging.getLogger(__name__)

CLI_FOLDER = "CLI"
MIN_OUTPUT_CHARS = 10  # Anything shorter is an echo or prompt, not a config
STABLE_POLLS = 2


@dataclass(frozen=True)
class CliCommand:
    command: str
    file_name: str
    timeout: float


class TerminalExtractionUnit:
    """Send/read/clear for the CLI terminal plus the two-command extraction"""

    def __init__(
        self,
        bridge,
        emit: Callable[[CapturedAsset], None],
        run_state: RunState,
        reporter,
        timings: Optional[BackupTimings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bridge = bridge
        self.emit = emit
        self.run_state = run_state
        self.reporter = reporter
        self.timings = timings or BackupTimings()
        self._sleep = sleep
        self._clock = clock

    @property
    def commands(self) -> List[CliCommand]:
        return [
            CliCommand("diff all", "diff_all.txt", self.timings.cli_diff_timeout),
            CliCommand("dump all", "dump_all.txt", self.timings.cli_dump_timeout),
        ]

    # === Terminal primitives ===

    async def send(self, command: str) -> bool:
        """
        Submit a command, trying each input method until one succeeds:
        xterm API, keystroke replay, then plain input field.
        """
        strategies: List[Tuple[str, Callable[[str], Awaitable[bool]]]] = [
            ("terminal_api", self.bridge.terminal_send_direct),
            ("keyboard", self.bridge.terminal_type),
            ("input_field", self.bridge.terminal_fill),
        ]
        for name, strategy in strategies:
            try:
                if await strategy(command):
                    logger.info(f"[CLI] Sent '{command}' via {name}")
                    return True
                logger.debug(f"[CLI] {name} unavailable for '{command}'")
            except Exception as e:
                logger.warning(f"[CLI] {name} failed for '{command}': {e}")

        logger.error(f"[CLI] No input method available for '{command}'")
        return False

    async def read(self) -> str:
        """Terminal buffer via xterm, falling back to the rendered DOM text"""
        try:
            text = await self.bridge.terminal_read()
            if text:
                return text
        except Exception as e:
            logger.debug(f"[CLI] Buffer read failed: {e}")
        try:
            return await self.bridge.terminal_read_dom() or ""
        except Exception as e:
            logger.warning(f"[CLI] DOM read failed: {e}")
            return ""

    async def clear(self) -> bool:
        try:
            method = await self.bridge.terminal_clear()
        except Exception as e:
            logger.warning(f"[CLI] Clear failed: {e}")
            return False
        if not method:
            logger.debug("[CLI] Nothing to clear the terminal with")
        await self._sleep(self.timings.cli_clear_settle)
        return bool(method)

    async def wait_for_quiescence(self, max_wait: float) -> bool:
        """
        Poll the output until its length stops changing.

        Growth resets the stability counter; an unchanged non-empty length
        increments it. Two unchanged polls in a row count as finished.

        Returns:
            True when the output became stable, False on timeout
        """
        last_length = 0
        stable = 0
        start = self._clock()

        while self._clock() - start < max_wait:
            self.run_state.check_cancelled()
            await self._sleep(self.timings.cli_poll_interval)
            self.run_state.check_cancelled()

            length = len(await self.read())
            if length > last_length:
                last_length = length
                stable = 0
            elif length > 0:
                stable += 1
                if stable >= STABLE_POLLS:
                    logger.info(f"[CLI] Output stable after {self._clock() - start:.1f}s ({length} chars)")
                    return True

        logger.warning(f"[CLI] Output not stable after {max_wait:.0f}s, reading what arrived")
        return False

    # === Extraction ===

    async def extract(self) -> int:
        """
        Run every CLI command and emit its output.

        Returns:
            Number of command outputs saved

        Raises:
            DeviceDisconnectedError: If the device drops at any CLI checkpoint
            BackupCancelledError: On cancellation
        """
        self.reporter.update("Extracting CLI configuration...")
        await self._sleep(self.timings.cli_init_settle)
        await ensure_connected(self.bridge, "cli_start", "Connection lost before CLI extraction - backup aborted.")

        try:
            diagnostics = await self.bridge.terminal_diagnostics()
            logger.info(f"[CLI] Diagnostics: {diagnostics}")
        except Exception as e:
            logger.warning(f"[CLI] Diagnostics failed: {e}")

        saved = 0
        for cli in self.commands:
            self.run_state.check_cancelled()
            await ensure_connected(self.bridge, f"cli_before_{cli.file_name}", "Connection lost during CLI extraction - backup aborted.")

            await self.clear()

            self.reporter.update(f"CLI: {cli.command}...")
            if not await self.send(cli.command):
                self.reporter.warning(f"WARNING: Could not send '{cli.command}' - skipping.")
                continue

            self.reporter.update(f"Waiting for '{cli.command}' response...")
            await self.wait_for_quiescence(cli.timeout)
            await ensure_connected(self.bridge, f"cli_after_{cli.file_name}", "Connection lost during CLI extraction - backup aborted.")

            output = await self.read()
            if len(output.strip()) > MIN_OUTPUT_CHARS:
                self.emit(CapturedAsset(folder_name=CLI_FOLDER, file_name=cli.file_name, payload=output, is_binary=False))
                saved += 1
                self.reporter.update(f"'{cli.command}' saved ({len(output) / 1024:.1f} KB).")
            else:
                self.reporter.warning(f"WARNING: No output for '{cli.command}'.")

            await self._sleep(self.timings.cli_command_pause)

        return saved
