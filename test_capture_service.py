"""
Tests for CaptureService spacing and retry bounds, and the retry helper.
"""

import asyncio

from capture_service import CaptureService
from conftest import FakeBridge, FakeClock
from utils.error_handler import BackupCancelledError
from utils.retry import linear_backoff, retry_async


def make_service(bridge, clock, **kwargs):
    bridge.clock = clock
    return CaptureService(bridge, clock=clock, sleep=clock.sleep, **kwargs)


def test_consecutive_captures_respect_min_interval():
    bridge = FakeBridge()
    clock = FakeClock()
    service = make_service(bridge, clock, min_interval=1.1)

    async def run():
        for _ in range(4):
            assert await service.capture()

    asyncio.run(run())

    gaps = [b - a for a, b in zip(bridge.capture_times, bridge.capture_times[1:])]
    assert len(gaps) == 3
    assert all(gap >= 1.1 - 1e-9 for gap in gaps)


def test_concurrent_burst_never_undercuts_interval():
    bridge = FakeBridge()
    clock = FakeClock()
    service = make_service(bridge, clock, min_interval=1.1)

    async def run():
        return await asyncio.gather(*(service.capture() for _ in range(6)))

    results = asyncio.run(run())

    assert all(results)
    times = sorted(bridge.capture_times)
    assert all(b - a >= 1.1 - 1e-9 for a, b in zip(times, times[1:]))


def test_no_wait_when_interval_already_elapsed():
    bridge = FakeBridge()
    clock = FakeClock()
    service = make_service(bridge, clock, min_interval=1.1)

    async def run():
        await service.capture()
        clock.now += 5.0
        await service.capture()

    asyncio.run(run())
    assert clock.sleeps == []


def test_three_failures_return_none_without_further_attempts():
    bridge = FakeBridge()
    bridge.capture_always_fail = True
    clock = FakeClock()
    service = make_service(bridge, clock, min_interval=0.0, retry_base_delay=1.5)

    result = asyncio.run(service.capture())

    assert result is None
    assert bridge.capture_calls == 3
    # Backoff grows with the attempt number and there is no wait after the last one
    assert clock.sleeps == [1.5, 3.0]
    assert service.failure_count == 1


def test_transient_failure_recovers_on_retry():
    bridge = FakeBridge()
    bridge.capture_failures = 2
    clock = FakeClock()
    service = make_service(bridge, clock, min_interval=0.0)

    result = asyncio.run(service.capture())

    assert result is not None
    assert bridge.capture_calls == 3
    assert service.failure_count == 0


def test_hung_capture_counts_as_failed_attempt():
    class HangingBridge(FakeBridge):
        async def capture_viewport(self, timeout=10.0):
            self.capture_calls += 1
            await asyncio.sleep(10)

    bridge = HangingBridge()
    service = CaptureService(bridge, min_interval=0.0, attempts=2, retry_base_delay=0.0, capture_timeout=0.01)

    assert asyncio.run(service.capture()) is None
    assert bridge.capture_calls == 2


def test_retry_propagates_listed_exceptions():
    calls = []

    async def operation(attempt):
        calls.append(attempt)
        raise BackupCancelledError()

    async def run():
        return await retry_async(operation, attempts=5, delay=linear_backoff(0), propagate=(BackupCancelledError,))

    try:
        asyncio.run(run())
        raised = False
    except BackupCancelledError:
        raised = True

    assert raised
    assert calls == [1]
