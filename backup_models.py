"""
Betaflight Backup - Backup Models

Pydantic models and run-state containers shared by the capture units,
the backup executor and the API routes.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Union

from pydantic import BaseModel, Field

from utils.error_handler import BackupCancelledError


class BackupPhase(str, Enum):
    """Orchestration state machine phases"""
    IDLE = "idle"
    PREPARING = "preparing"
    DISCOVERING_PANELS = "discovering_panels"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PHASES = (BackupPhase.COMPLETE, BackupPhase.FAILED, BackupPhase.CANCELLED)


class StatusAction(str, Enum):
    """Status event kinds relayed to listeners"""
    UPDATE = "backupStatusUpdate"
    WARNING = "backupWarning"
    COMPLETE = "backupComplete"
    CANCELLED = "backupCancelled"
    ERROR = "backupError"


class ConnectionState(str, Enum):
    """Result of the layered connectivity probe"""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"  # No indicator found, treated as connected


class VariantKind(str, Enum):
    """Variant axes on the PID tuning panel"""
    PRIMARY = "pid_profile"
    SECONDARY = "rate_profile"


class PanelDescriptor(BaseModel):
    """One navigable configurator tab, discovered fresh each run"""
    structural_class: str = Field(..., min_length=1)  # e.g. 'tab_pid_tuning'
    display_label: str = ""  # Localized, display only


class CaptureOptions(BaseModel):
    """What to capture during one run (immutable for the run)"""
    include_screenshots: bool = True
    include_console_dump: bool = True
    include_variant_cycling: bool = True
    selected_panels: Set[str] = Field(default_factory=set)

    class Config:
        frozen = True


class ProgressState(BaseModel):
    """Panel progress (current panel index / total panels after filtering)"""
    current: int = Field(0, ge=0)
    total: int = Field(0, ge=0)

    def advance_to(self, current: int, total: Optional[int] = None) -> "ProgressState":
        """Return a new progress state, never moving backwards"""
        new_total = self.total if total is None else total
        return ProgressState(current=max(self.current, current), total=new_total)


class StatusEvent(BaseModel):
    """Fire-and-forget status/progress event"""
    phase: BackupPhase
    action: StatusAction = StatusAction.UPDATE
    message: str
    progress: Optional[ProgressState] = None
    timestamp: float = Field(default_factory=time.time)

    class Config:
        use_enum_values = True


class BackupTimings(BaseModel):
    """Every delay and timeout used during a run, in seconds"""
    min_capture_interval: float = 1.1
    capture_retry_base: float = 1.5
    capture_timeout: float = 10.0
    capture_attempts: int = 3

    scroll_reset_settle: float = 0.3
    scroll_remeasure_settle: float = 0.2
    scroll_step_settle: float = 0.3

    panel_settle: float = 3.5
    sub_panel_settle: float = 1.0
    variant_sub_panel_settle: float = 0.8

    variant_settle: float = 2.5
    select_verify_wait: float = 0.5
    select_retry_wait: float = 0.5
    select_retries: int = 3
    restore_settle: float = 1.0

    discovery_attempts: int = 10
    discovery_retry_delay: float = 0.5
    expert_mode_settle: float = 1.5

    script_attempts: int = 3
    script_retry_delay: float = 0.25

    cli_init_settle: float = 3.0
    cli_clear_settle: float = 0.5
    cli_poll_interval: float = 1.0
    cli_command_pause: float = 1.0
    cli_diff_timeout: float = 30.0
    cli_dump_timeout: float = 45.0

    heartbeat_interval: float = 20.0

    @classmethod
    def instant(cls) -> "BackupTimings":
        """Zero-delay timings (tests and dry runs)"""
        return cls(
            min_capture_interval=0.0,
            capture_retry_base=0.0,
            scroll_reset_settle=0.0,
            scroll_remeasure_settle=0.0,
            scroll_step_settle=0.0,
            panel_settle=0.0,
            sub_panel_settle=0.0,
            variant_sub_panel_settle=0.0,
            variant_settle=0.0,
            select_verify_wait=0.0,
            select_retry_wait=0.0,
            restore_settle=0.0,
            discovery_retry_delay=0.0,
            expert_mode_settle=0.0,
            script_retry_delay=0.0,
            cli_init_settle=0.0,
            cli_clear_settle=0.0,
            cli_poll_interval=0.0,
            cli_command_pause=0.0,
            cli_diff_timeout=5.0,
            cli_dump_timeout=5.0,
            heartbeat_interval=0.05,
        )


class BackupResult(BaseModel):
    """Outcome of one backup run"""
    phase: BackupPhase
    success: bool = False
    message: str = ""
    archive_name: Optional[str] = None
    asset_count: int = 0
    panels_processed: int = 0
    panels_total: int = 0
    warnings: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None


@dataclass
class CapturedAsset:
    """One file handed to the archive; the core keeps no reference afterwards"""
    folder_name: str
    file_name: str
    payload: Union[bytes, str]
    is_binary: bool = True


@dataclass(frozen=True)
class NamingContext:
    """Folder and file-name prefix for one panel visit"""
    folder: str  # e.g. '06_PID_Tuning'
    prefix: str  # e.g. '06'
    english_name: str
    label: str = ""


@dataclass
class VariantAxis:
    """One stored-configuration axis and its pre-cycling value"""
    kind: VariantKind
    selector: str
    options: List[str] = field(default_factory=list)
    guessed: bool = False
    _original_value: Optional[str] = field(default=None, init=False, repr=False)
    _recorded: bool = field(default=False, init=False, repr=False)

    @property
    def original_value(self) -> Optional[str]:
        return self._original_value

    def record_original(self, value: Optional[str]) -> None:
        """Store the value seen before cycling. Write-once per run."""
        if self._recorded:
            raise ValueError(f"Original value for {self.kind.value} already recorded")
        self._original_value = value
        self._recorded = True


@dataclass
class RunState:
    """Process-wide run flags, owned by the backup executor"""
    running: bool = False
    cancel_requested: bool = False
    phase: BackupPhase = BackupPhase.IDLE

    def begin(self) -> None:
        self.running = True
        self.cancel_requested = False
        self.phase = BackupPhase.PREPARING

    def request_cancel(self) -> bool:
        """Flag cancellation. Returns False if nothing is running."""
        if not self.running:
            return False
        self.cancel_requested = True
        return True

    def check_cancelled(self) -> None:
        """Raise BackupCancelledError at a cooperative cancellation point"""
        if self.cancel_requested:
            raise BackupCancelledError("Backup stopped by user.")

    def reset(self) -> None:
        self.running = False
        self.cancel_requested = False


class Preferences(BaseModel):
    """Persisted option and panel selection (last used)"""
    screenshots: bool = True
    cli: bool = True
    profiles: bool = True
    tab_selections: Dict[str, bool] = Field(default_factory=dict)

    def selected_panels(self) -> Set[str]:
        return {cls for cls, on in self.tab_selections.items() if on}

    def to_capture_options(self) -> CaptureOptions:
        return CaptureOptions(
            include_screenshots=self.screenshots,
            include_console_dump=self.cli,
            include_variant_cycling=self.profiles,
            selected_panels=self.selected_panels(),
        )
