"""
Betaflight Backup - Capture Service
Rate-limited viewport capture with retry.

Chromium only allows a couple of visible-tab captures per second, so
consecutive calls are spaced by a minimum interval and failing captures are
retried with a growing backoff. Exhausted retries return None: the caller
skips that asset and the run continues.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from utils.retry import linear_backoff, retry_async

logger = logging.getLogger(__name__)


class CaptureService:
    """Single-flight, rate-limited wrapper around the viewport capture primitive"""

    def __init__(
        self,
        bridge,
        min_interval: float = 1.1,
        attempts: int = 3,
        retry_base_delay: float = 1.5,
        capture_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            bridge: BrowserBridge (anything with ``capture_viewport(timeout)``)
            min_interval: Minimum seconds between the starts of two capture calls
            attempts: Total capture attempts per request
            retry_base_delay: Backoff base; attempt N waits base * N before retrying
            capture_timeout: Timeout handed to the capture primitive
        """
        self.bridge = bridge
        self.min_interval = min_interval
        self.attempts = attempts
        self.retry_base_delay = retry_base_delay
        self.capture_timeout = capture_timeout
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_capture_at: Optional[float] = None

        self.capture_count = 0
        self.failure_count = 0

    @classmethod
    def from_timings(cls, bridge, timings) -> "CaptureService":
        return cls(
            bridge,
            min_interval=timings.min_capture_interval,
            attempts=timings.capture_attempts,
            retry_base_delay=timings.capture_retry_base,
            capture_timeout=timings.capture_timeout,
        )

    async def capture(self) -> Optional[bytes]:
        """
        Capture the current viewport.

        Returns:
            JPEG bytes, or None when every attempt failed
        """
        async with self._lock:
            result = await retry_async(
                self._attempt,
                attempts=self.attempts,
                delay=linear_backoff(self.retry_base_delay),
                description="[CaptureService] Viewport capture",
                sleep=self._sleep,
            )
            if result is None:
                self.failure_count += 1
            return result

    async def _attempt(self, attempt: int) -> Optional[bytes]:
        await self._wait_for_slot()
        self._last_capture_at = self._clock()
        self.capture_count += 1
        # Hard ceiling: primitive timeout plus one second of slack
        data = await asyncio.wait_for(
            self.bridge.capture_viewport(timeout=self.capture_timeout),
            timeout=self.capture_timeout + 1.0,
        )
        if not data:
            return None
        return data

    async def _wait_for_slot(self):
        """Sleep until min_interval has passed since the previous call started"""
        if self._last_capture_at is None:
            return
        elapsed = self._clock() - self._last_capture_at
        wait = self.min_interval - elapsed
        if wait > 0:
            logger.debug(f"[CaptureService] Rate limit: waiting {wait * 1000:.0f}ms")
            await self._sleep(wait)
