"""
Scan Progress Estimator

The backend scan gives no progress reports and its duration is unknown until
it returns. This is a UX-smoothing estimate, not a measurement: a fixed-rate
timer interpolates linearly from 0 to 100 over a nominal duration and the
value is capped at 100.

Guarantees while a scan is active:
- progress never decreases and stays within [0, 100]
- if the scan returns early, completion waits for the nominal duration, so
  the indicator never jumps straight to 100
- if the scan runs long, completion is immediate once it returns

After completion the value is held at 100 for a short delay, then reset to 0.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from egdata_client.logger import setup_logger
from egdata_client.task_registry import TaskRegistry

logger = setup_logger()

T = TypeVar("T")


class ScanProgressEstimator:
    """
    Usage:
        estimator = ScanProgressEstimator(duration_ms=3000)
        estimator.subscribe(lambda value: bar.set(value))
        result = await estimator.track(gateway.call("scan_games_now"))
    """

    def __init__(
        self,
        duration_ms: int = 3000,
        tick_ms: int = 100,
        hold_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
        tasks: Optional[TaskRegistry] = None,
    ):
        self.duration = duration_ms / 1000
        self.tick = tick_ms / 1000
        self.hold = hold_ms / 1000
        self._clock = clock
        self._tasks = tasks or TaskRegistry("scan-progress")
        self._progress = 0.0
        self._started_at: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None
        self._reset_task: Optional[asyncio.Task] = None
        self._listeners: list[Callable[[float], None]] = []
        self._tracking = 0

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def is_active(self) -> bool:
        return self._started_at is not None

    def subscribe(self, listener: Callable[[float], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def estimate(self, now: Optional[float] = None) -> float:
        """Linear estimate for the active scan at `now`, capped at 100."""
        if self._started_at is None:
            return self._progress
        now = self._clock() if now is None else now
        elapsed = max(0.0, now - self._started_at)
        return min(100.0, elapsed / self.duration * 100)

    def start(self) -> None:
        if self._reset_task is not None:
            self._reset_task.cancel()
            self._reset_task = None
        if self._timer is not None:
            self._timer.cancel()

        self._started_at = self._clock()
        self._publish(0.0, force=True)
        self._timer = self._tasks.spawn(self._run_timer(), name="scan-progress-timer")
        logger.debug(f"Scan progress started (nominal {self.duration:.1f}s)")

    async def wait_out_nominal(self) -> None:
        """Sleep until the nominal duration has passed since start(); no-op if it already has."""
        if self._started_at is None:
            return
        remaining = self.duration - (self._clock() - self._started_at)
        if remaining > 0:
            await asyncio.sleep(remaining)

    def complete(self) -> None:
        """Stop the timer, show 100 and schedule the reset to 0 after the hold delay."""
        self._stop_timer()
        self._publish(100.0)
        self._started_at = None
        self._reset_task = self._tasks.spawn(self._reset_after_hold(), name="scan-progress-reset")

    def abort(self) -> None:
        """Stop the timer and reset to 0 immediately (the scan failed)."""
        self._stop_timer()
        self._started_at = None
        self._publish(0.0, force=True)

    async def track(self, operation: Awaitable[T]) -> T:
        """
        Run `operation` under the estimator and return its result.

        Overlapping calls share one run: the first starts it and the last to
        finish ends it, aborting only if that last operation failed.
        """
        if self._tracking == 0:
            self.start()
        self._tracking += 1
        failed = False
        try:
            result = await operation
            await self.wait_out_nominal()
        except BaseException:
            failed = True
            raise
        finally:
            self._tracking -= 1
            if self._tracking == 0:
                if failed:
                    self.abort()
                else:
                    self.complete()
        return result

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.tick)
            self._publish(self.estimate())

    async def _reset_after_hold(self) -> None:
        await asyncio.sleep(self.hold)
        self._publish(0.0, force=True)
        self._reset_task = None

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _publish(self, value: float, force: bool = False) -> None:
        value = min(100.0, max(0.0, value))
        # Only start/abort/reset may move the value down
        if not force and value < self._progress:
            return
        if value == self._progress and not force:
            return
        self._progress = value
        for listener in list(self._listeners):
            listener(value)
