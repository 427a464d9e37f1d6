"""
Betaflight Backup - Status Channel

Fire-and-forget fan-out of StatusEvents to any listening presentation
layer (WebSocket clients, log, tests). Also keeps:
- the last status, so a client that connects mid-run sees where it is
- an icon-style badge (text + colour) mirroring run progress
- a persistent failure indicator that stays set until acknowledged

Delivery is best-effort: no listener is not an error, a full subscriber
queue drops the event for that subscriber, and a failing listener is logged
and ignored.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from backup_models import BackupPhase, ProgressState, StatusAction, StatusEvent

logger = logging.getLogger(__name__)

BADGE_RUNNING = "#ff9800"
BADGE_SUCCESS = "#66bb6a"
BADGE_ERROR = "#ef5350"


@dataclass
class BadgeState:
    text: str = ""
    color: str = ""


class StatusChannel:
    """Broadcasts status events and tracks the user-visible run indicator"""

    def __init__(self, queue_size: int = 100, success_clear_s: float = 5.0, error_clear_s: float = 8.0):
        self._subscribers: Set[asyncio.Queue] = set()
        self._listeners: List[Callable[[StatusEvent], Any]] = []
        self.queue_size = queue_size
        self.success_clear_s = success_clear_s
        self.error_clear_s = error_clear_s

        self.last_status: Optional[StatusEvent] = None
        self.badge = BadgeState()
        self.failure: Optional[str] = None
        self._badge_timer: Optional[asyncio.TimerHandle] = None

    # === Subscription ===

    def subscribe(self) -> asyncio.Queue:
        """
        Register an async subscriber.

        The last status is replayed immediately unless it is an error:
        errors are only delivered live, a replayed one would be stale.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        if self.last_status is not None and self.last_status.action != StatusAction.ERROR.value:
            queue.put_nowait(self.last_status)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.discard(queue)

    def add_listener(self, listener: Callable[[StatusEvent], Any]):
        """Register a synchronous callback receiving every event"""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[StatusEvent], Any]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # === Publishing ===

    def publish(self, event: StatusEvent):
        """Deliver an event to everyone listening. Never raises."""
        self.last_status = event
        self._update_badge(event)

        if event.action == StatusAction.WARNING.value:
            logger.warning(f"[Status] {event.message}")
        elif event.action == StatusAction.ERROR.value:
            logger.error(f"[Status] {event.message}")
        else:
            logger.info(f"[Status] {event.message}")

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug("[Status] Subscriber queue full, dropping event")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"[Status] Listener {listener!r} failed: {e}")

    def update(self, phase: BackupPhase, message: str, progress: Optional[ProgressState] = None):
        self.publish(StatusEvent(phase=phase, action=StatusAction.UPDATE, message=message, progress=progress))

    def warning(self, phase: BackupPhase, message: str, progress: Optional[ProgressState] = None):
        self.publish(StatusEvent(phase=phase, action=StatusAction.WARNING, message=message, progress=progress))

    def complete(self, message: str, progress: Optional[ProgressState] = None):
        self.publish(StatusEvent(phase=BackupPhase.COMPLETE, action=StatusAction.COMPLETE, message=message, progress=progress))

    def cancelled(self, message: str, progress: Optional[ProgressState] = None):
        self.publish(StatusEvent(phase=BackupPhase.CANCELLED, action=StatusAction.CANCELLED, message=message, progress=progress))

    def error(self, phase: BackupPhase, message: str, progress: Optional[ProgressState] = None):
        self.publish(StatusEvent(phase=phase, action=StatusAction.ERROR, message=message, progress=progress))

    # === Badge and failure indicator ===

    def _update_badge(self, event: StatusEvent):
        action = event.action
        if action == StatusAction.COMPLETE.value:
            self._set_badge("OK", BADGE_SUCCESS, clear_after=self.success_clear_s)
            self.failure = None
        elif action == StatusAction.CANCELLED.value:
            self._set_badge("!", BADGE_ERROR, clear_after=self.success_clear_s)
        elif action == StatusAction.ERROR.value:
            self._set_badge("!", BADGE_ERROR, clear_after=self.error_clear_s)
            self.failure = event.message
        elif event.phase == BackupPhase.FINALIZING.value:
            self._set_badge("ZIP", BADGE_RUNNING)
        elif event.progress is not None and event.progress.current > 0:
            self._set_badge(str(event.progress.current), BADGE_RUNNING)
        elif action == StatusAction.UPDATE.value and not self.badge.text:
            self._set_badge("...", BADGE_RUNNING)

    def _set_badge(self, text: str, color: str, clear_after: Optional[float] = None):
        if self._badge_timer is not None:
            self._badge_timer.cancel()
            self._badge_timer = None
        self.badge = BadgeState(text=text, color=color)
        if clear_after:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._badge_timer = loop.call_later(clear_after, self.clear_badge)

    def clear_badge(self):
        self.badge = BadgeState()
        self._badge_timer = None

    def begin_run(self):
        """Reset per-run indicators when a new run starts"""
        self.failure = None
        self._set_badge("...", BADGE_RUNNING)

    def acknowledge(self) -> bool:
        """Clear the persistent failure indicator. Returns True if one was set."""
        had_failure = self.failure is not None
        self.failure = None
        if had_failure and self.badge.text == "!":
            self.clear_badge()
        return had_failure

    def snapshot(self) -> Dict[str, Any]:
        return {
            "last_status": self.last_status.dict() if self.last_status else None,
            "badge": asdict(self.badge),
            "failure": self.failure,
            "subscribers": len(self._subscribers),
        }


class RunReporter:
    """
    Per-run view of the status channel used by the capture units.

    Binds the current phase and progress so units only pass a message, and
    collects warnings for the run result.
    """

    def __init__(self, channel: StatusChannel, phase: BackupPhase = BackupPhase.PREPARING):
        self.channel = channel
        self.phase = phase
        self.progress = ProgressState()
        self.warnings: List[str] = []

    def set_phase(self, phase: BackupPhase):
        self.phase = phase

    def set_progress(self, current: int, total: Optional[int] = None):
        self.progress = self.progress.advance_to(current, total)

    def update(self, message: str):
        self.channel.update(self.phase, message, self.progress)

    def warning(self, message: str):
        self.warnings.append(message)
        self.channel.warning(self.phase, message, self.progress)
