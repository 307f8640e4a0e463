"""Unit tests for the frame scheduler."""

from __future__ import annotations

import pytest

from domain.short_video import ShortVideoValidationError
from service.scheduling import FrameScheduler, MonotonicClock


class ManualClock:
    """Clock advanced explicitly by the test."""

    def __init__(self) -> None:
        self.current_ms = 0.0

    def now_ms(self) -> float:
        return self.current_ms


def build_scheduler(fps: int, clock: ManualClock, sleeps: list[float]) -> FrameScheduler:
    """Build a scheduler whose sleep advances the manual clock."""

    def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock.current_ms += seconds * 1000.0

    return FrameScheduler(fps, clock, sleep=fake_sleep)


def test_callbacks_run_once_per_interval() -> None:
    """Sleep out the remainder of each frame interval."""
    clock = ManualClock()
    sleeps: list[float] = []
    scheduler = build_scheduler(10, clock, sleeps)
    calls: list[float] = []

    def tick() -> None:
        calls.append(clock.now_ms())
        clock.current_ms += 30.0
        if len(calls) < 3:
            scheduler.schedule(tick)

    scheduler.schedule(tick)
    scheduler.run()

    assert calls == pytest.approx([0.0, 100.0, 200.0])
    assert sleeps == pytest.approx([0.07, 0.07])


def test_late_callbacks_do_not_sleep() -> None:
    """Run immediately when the previous tick overran the interval."""
    clock = ManualClock()
    sleeps: list[float] = []
    scheduler = build_scheduler(10, clock, sleeps)
    calls: list[float] = []

    def tick() -> None:
        calls.append(clock.now_ms())
        clock.current_ms += 150.0
        if len(calls) < 3:
            scheduler.schedule(tick)

    scheduler.schedule(tick)
    scheduler.run()

    assert calls == [0.0, 150.0, 300.0]
    assert sleeps == []


def test_cancel_all_drains_queue() -> None:
    """Drop pending callbacks."""
    clock = ManualClock()
    scheduler = build_scheduler(10, clock, [])
    calls: list[int] = []
    scheduler.schedule(lambda: calls.append(1))
    scheduler.cancel_all()
    scheduler.run()
    assert calls == []


def test_rejects_non_positive_fps() -> None:
    """Reject a zero frame rate."""
    with pytest.raises(ShortVideoValidationError):
        FrameScheduler(0, ManualClock())


def test_monotonic_clock_never_goes_backwards() -> None:
    """Report non-decreasing milliseconds."""
    clock = MonotonicClock()
    first = clock.now_ms()
    assert clock.now_ms() >= first
