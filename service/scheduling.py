"""Clock and cooperative frame scheduler driving the capture loop."""

from __future__ import annotations

from collections import deque
import time
from typing import Callable, Deque

from domain.short_video import INVALID_CONFIG_CODE, ShortVideoValidationError

TickCallback = Callable[[], None]


class MonotonicClock:
    """Wall clock in milliseconds from time.monotonic."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


class FrameScheduler:
    """Run queued callbacks one per frame interval.

    Callbacks reschedule themselves; run() returns when the queue drains.
    A callback that runs late does not trigger catch-up calls.
    """

    def __init__(
        self,
        fps: int,
        clock: MonotonicClock,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if fps <= 0:
            raise ShortVideoValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        self.interval_ms = 1000.0 / fps
        self._clock = clock
        self._sleep = sleep
        self._queue: Deque[TickCallback] = deque()
        self._last_tick_ms: float | None = None

    def schedule(self, callback: TickCallback) -> None:
        self._queue.append(callback)

    def cancel_all(self) -> None:
        self._queue.clear()

    def run(self) -> None:
        while self._queue:
            callback = self._queue.popleft()
            if self._last_tick_ms is not None:
                wait_ms = self._last_tick_ms + self.interval_ms - self._clock.now_ms()
                if wait_ms > 0:
                    self._sleep(wait_ms / 1000.0)
            self._last_tick_ms = self._clock.now_ms()
            callback()
