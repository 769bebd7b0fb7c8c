"""
clock.py - Clock and wait primitives

The loop measures time in integer nanoseconds from time.monotonic_ns so that
debt arithmetic is exact and immune to wall-clock adjustments. Waits are
expressed in seconds, matching time.sleep / asyncio.sleep.
"""

from __future__ import annotations

import time
from typing import Callable

TICKS_PER_SECOND = 1_000_000_000

Clock = Callable[[], int]
Sleeper = Callable[[float], None]


def monotonic_ticks() -> int:
    """Default clock: monotonic nanoseconds."""
    return time.monotonic_ns()


def ticks_to_seconds(ticks: int) -> float:
    return ticks / TICKS_PER_SECOND


def seconds_to_ticks(seconds: float) -> int:
    return int(seconds * TICKS_PER_SECOND)


def precise_sleep(seconds: float, slack_s: float = 0.001, clock: Clock = monotonic_ticks) -> None:
    """
    Hybrid sleep: time.sleep() for all but the last slack_s seconds, then
    spin on the clock until the deadline. Trades CPU for lower wake-up jitter.
    """
    deadline = clock() + seconds_to_ticks(seconds)
    if seconds > slack_s:
        time.sleep(seconds - slack_s)
    while clock() < deadline:
        pass


def make_sleeper(slack_s: float = 0.0) -> Sleeper:
    """Return time.sleep when slack_s is 0, otherwise a precise_sleep bound to slack_s."""
    if slack_s <= 0:
        return time.sleep

    def _sleep(seconds: float) -> None:
        precise_sleep(seconds, slack_s=slack_s)

    return _sleep
