"""
cancellation.py - Cancellation as predicate composition

A rate loop stops when its predicate returns False. Cancellation is just
another condition ANDed into that predicate, so it is only observed at the
top of an iteration: an in-flight payload or wait is never interrupted.

Any object with an is_set() method works as a signal: threading.Event,
asyncio.Event, or CancelToken below.
"""

from __future__ import annotations

import threading
from typing import Callable, Protocol

LoopPredicate = Callable[[int], bool]


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


class CancelToken:
    """Thread-safe one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"


def until_cancelled(predicate: LoopPredicate, signal: CancelSignal) -> LoopPredicate:
    """
    Compose `not signal.is_set() and predicate(i)`.

    The signal is checked first so a cancelled loop does not call the
    wrapped predicate again.
    """
    def _predicate(iteration: int) -> bool:
        return not signal.is_set() and predicate(iteration)

    return _predicate


def iterations(count: int) -> LoopPredicate:
    """Predicate that allows exactly `count` iterations (1-based indexes 1..count)."""
    if count < 0:
        raise ValueError("count must be >= 0")

    def _predicate(iteration: int) -> bool:
        return iteration <= count

    return _predicate


def forever(iteration: int) -> bool:
    """Predicate that never stops the loop on its own; pair with a cancel signal."""
    return True
