"""
loop.py - Rate-Debt Loop

Runs a caller-supplied payload at a fixed target rate, carrying timing error
("time debt") forward so the long-run average converges on the target even
when individual iterations overrun.

Design
------
* One algorithm. _rate_steps() is a generator holding all loop state (start
  time, debt, counter) and yielding Step commands: PRE, SKIP, TIMED, WAIT.
  run_rate_loop() and run_rate_loop_async() only execute those commands,
  calling or awaiting the callbacks and performing the wait.
* Absolute schedule. Every wait is computed against loop_count * interval
  measured from the loop's start, never against the previous wait, so
  rounding error does not compound.
* Wait-or-carry. A positive remaining budget is waited out. A negative one
  becomes debt, absorbed by shorter future waits or shed via skip_act.
* Pass-through errors. Nothing raised by a callback is caught or wrapped.

Per iteration:

    pre_timed()                               # if given
    if debt > interval and skip_act:          # shed one interval of debt
        debt -= interval; skip_act(); next
    timed(debt)
    behind = (now - start) - n * interval
    debt = 0
    wait = -behind
    wait > 0 ? sleep(wait) : debt += -wait

Usage::

    stats = run_rate_loop(60.0, step_physics, iterations(600))

    stop = CancelToken()
    task = spawn_rate_loop(30.0, render, forever, cancel=stop)
    ...
    stop.cancel()
    stats = await task
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

from timedebt.cancellation import CancelSignal, LoopPredicate, until_cancelled
from timedebt.clock import (
    TICKS_PER_SECOND,
    Clock,
    Sleeper,
    make_sleeper,
    monotonic_ticks,
    seconds_to_ticks,
    ticks_to_seconds,
)
from timedebt.exceptions import InvalidRateError
from timedebt.observability.logger import get_logger

log = get_logger(__name__)

TimedFn = Callable[[float], Any]
ActionFn = Callable[[], Any]
MaybeAsync = Union[Any, Awaitable[Any]]


# ─────────────────────────────────────────────────────────────────────────────
# Loop report
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class LoopStats:
    """
    Summary of one loop run. Durations are kept in clock ticks (ns) so they
    stay exact; the *_s properties convert to seconds.
    """
    target_rate: float
    interval_ticks: int
    iterations: int = 0
    timed_runs: int = 0
    skipped_runs: int = 0
    total_wait_ticks: int = 0
    max_debt_ticks: int = 0
    final_debt_ticks: int = 0
    elapsed_ticks: int = 0

    @property
    def interval_s(self) -> float:
        return ticks_to_seconds(self.interval_ticks)

    @property
    def total_wait_s(self) -> float:
        return ticks_to_seconds(self.total_wait_ticks)

    @property
    def max_debt_s(self) -> float:
        return ticks_to_seconds(self.max_debt_ticks)

    @property
    def final_debt_s(self) -> float:
        return ticks_to_seconds(self.final_debt_ticks)

    @property
    def elapsed_s(self) -> float:
        return ticks_to_seconds(self.elapsed_ticks)

    @property
    def achieved_rate(self) -> float:
        """Iterations per second actually achieved (0.0 before any time has passed)."""
        if self.elapsed_ticks <= 0:
            return 0.0
        return self.iterations / self.elapsed_s


# ─────────────────────────────────────────────────────────────────────────────
# Core
# ─────────────────────────────────────────────────────────────────────────────

class StepKind(enum.Enum):
    PRE = "pre"
    SKIP = "skip"
    TIMED = "timed"
    WAIT = "wait"


@dataclass(frozen=True)
class Step:
    kind: StepKind
    ticks: int = 0  # debt for TIMED, duration for WAIT

    @property
    def seconds(self) -> float:
        return ticks_to_seconds(self.ticks)


def interval_ticks(target_rate: float) -> int:
    """Clock ticks per iteration at target_rate. Raises InvalidRateError if unusable."""
    if isinstance(target_rate, bool) or not isinstance(target_rate, (int, float)):
        raise InvalidRateError(target_rate)
    if not math.isfinite(target_rate) or target_rate <= 0:
        raise InvalidRateError(target_rate)
    ticks = int(TICKS_PER_SECOND / target_rate)
    if ticks <= 0:
        raise InvalidRateError(
            target_rate,
            f"target_rate {target_rate!r} is too high: interval rounds to zero ticks",
        )
    return ticks


def _rate_steps(
    stats: LoopStats,
    loop_predicate: LoopPredicate,
    has_skip: bool,
    has_pre: bool,
    clock: Clock,
    lag_warn_ticks: Optional[int],
    run_log: Any,
) -> Iterator[Step]:
    iter_ticks = stats.interval_ticks
    start_time = clock()
    time_debt = 0
    lagging = False

    run_log.info(
        "rate_loop.start",
        target_rate=stats.target_rate,
        interval_s=stats.interval_s,
        skip_enabled=has_skip,
    )

    loop_count = 1
    while loop_predicate(loop_count):
        stats.iterations += 1

        if has_pre:
            yield Step(StepKind.PRE)

        if has_skip and time_debt > iter_ticks:
            time_debt -= iter_ticks
            stats.skipped_runs += 1
            run_log.debug(
                "rate_loop.skip",
                iteration=loop_count,
                debt_s=ticks_to_seconds(time_debt),
            )
            yield Step(StepKind.SKIP)
            loop_count += 1
            continue

        yield Step(StepKind.TIMED, time_debt)
        stats.timed_runs += 1

        # Iteration n is due to finish at n * interval from the start. The
        # clock already reflects any carried debt, so it is not added again.
        current = clock() - start_time
        amount_behind = current - (loop_count * iter_ticks)
        time_debt = 0
        wait_time = -amount_behind

        if wait_time > 0:
            stats.total_wait_ticks += wait_time
            lagging = False
            yield Step(StepKind.WAIT, wait_time)
        else:
            time_debt += -wait_time
            stats.max_debt_ticks = max(stats.max_debt_ticks, time_debt)
            if lag_warn_ticks is not None and time_debt > lag_warn_ticks:
                if not lagging:
                    run_log.warning(
                        "rate_loop.lagging",
                        iteration=loop_count,
                        debt_s=ticks_to_seconds(time_debt),
                        interval_s=stats.interval_s,
                    )
                lagging = True
            else:
                lagging = False

        loop_count += 1

    stats.final_debt_ticks = time_debt
    stats.elapsed_ticks = clock() - start_time
    run_log.info(
        "rate_loop.stop",
        iterations=stats.iterations,
        timed_runs=stats.timed_runs,
        skipped_runs=stats.skipped_runs,
        elapsed_s=round(stats.elapsed_s, 6),
        final_debt_s=stats.final_debt_s,
    )


def _prepare(
    target_rate: float,
    loop_predicate: LoopPredicate,
    cancel: Optional[CancelSignal],
    lag_warn_s: Optional[float],
    name: Optional[str],
) -> tuple[LoopStats, LoopPredicate, Optional[int], Any]:
    stats = LoopStats(target_rate=target_rate, interval_ticks=interval_ticks(target_rate))
    if cancel is not None:
        loop_predicate = until_cancelled(loop_predicate, cancel)
    lag_warn_ticks = seconds_to_ticks(lag_warn_s) if lag_warn_s is not None else None
    run_log = log.bind(loop=name) if name else log
    return stats, loop_predicate, lag_warn_ticks, run_log


# ─────────────────────────────────────────────────────────────────────────────
# Blocking driver
# ─────────────────────────────────────────────────────────────────────────────

def run_rate_loop(
    target_rate: float,
    timed: TimedFn,
    loop_predicate: LoopPredicate,
    skip_act: Optional[ActionFn] = None,
    pre_timed: Optional[ActionFn] = None,
    *,
    cancel: Optional[CancelSignal] = None,
    clock: Optional[Clock] = None,
    sleep: Optional[Sleeper] = None,
    lag_warn_s: Optional[float] = None,
    name: Optional[str] = None,
) -> LoopStats:
    """
    Run `timed` at `target_rate` times per second on the calling thread.

    Args:
        target_rate:    Iterations per second. Must be finite and > 0.
        timed:          Payload, called with the current time debt in seconds.
        loop_predicate: Called with the 1-based iteration index before each
                        iteration; the loop ends on the first False.
        skip_act:       Run instead of `timed` while debt exceeds one interval.
                        None disables skipping.
        pre_timed:      Run at the top of every iteration, skipped or not.
        cancel:         Object with is_set(); checked at iteration boundaries.
        clock:          Tick source in ns (default time.monotonic_ns).
        sleep:          Blocking wait taking seconds (default time.sleep).
        lag_warn_s:     Log rate_loop.lagging when debt exceeds this.
        name:           Bound to every log line as `loop`.

    Returns:
        LoopStats for the completed run.

    Raises:
        InvalidRateError: target_rate is not usable. Raised before any callback.
        Anything raised by a callback or the predicate, unchanged.
    """
    stats, loop_predicate, lag_warn_ticks, run_log = _prepare(
        target_rate, loop_predicate, cancel, lag_warn_s, name
    )
    sleep = sleep or time.sleep

    steps = _rate_steps(
        stats,
        loop_predicate,
        has_skip=skip_act is not None,
        has_pre=pre_timed is not None,
        clock=clock or monotonic_ticks,
        lag_warn_ticks=lag_warn_ticks,
        run_log=run_log,
    )
    try:
        for step in steps:
            if step.kind is StepKind.PRE:
                pre_timed()
            elif step.kind is StepKind.SKIP:
                skip_act()
            elif step.kind is StepKind.TIMED:
                timed(step.seconds)
            else:
                sleep(step.seconds)
    finally:
        steps.close()
    return stats


# ─────────────────────────────────────────────────────────────────────────────
# Cooperative (asyncio) driver
# ─────────────────────────────────────────────────────────────────────────────

async def _maybe_await(result: MaybeAsync) -> None:
    if inspect.isawaitable(result):
        await result


async def run_rate_loop_async(
    target_rate: float,
    timed: Callable[[float], MaybeAsync],
    loop_predicate: LoopPredicate,
    skip_act: Optional[Callable[[], MaybeAsync]] = None,
    pre_timed: Optional[Callable[[], MaybeAsync]] = None,
    *,
    cancel: Optional[CancelSignal] = None,
    clock: Optional[Clock] = None,
    sleep: Optional[Callable[[float], MaybeAsync]] = None,
    blocking_wait: bool = False,
    lag_warn_s: Optional[float] = None,
    name: Optional[str] = None,
) -> LoopStats:
    """
    Coroutine form of run_rate_loop() with identical scheduling.

    `timed`, `skip_act` and `pre_timed` may be coroutine functions (awaited)
    or plain callables. The wait between iterations uses asyncio.sleep, so
    other tasks run during it. With blocking_wait=True the wait uses
    time.sleep instead and holds the event loop thread for its duration;
    this exists for callers relying on that older behaviour.

    A custom `sleep` may be sync or async; its result is awaited if awaitable.
    """
    stats, loop_predicate, lag_warn_ticks, run_log = _prepare(
        target_rate, loop_predicate, cancel, lag_warn_s, name
    )
    if sleep is None:
        sleep = time.sleep if blocking_wait else asyncio.sleep

    steps = _rate_steps(
        stats,
        loop_predicate,
        has_skip=skip_act is not None,
        has_pre=pre_timed is not None,
        clock=clock or monotonic_ticks,
        lag_warn_ticks=lag_warn_ticks,
        run_log=run_log,
    )
    try:
        for step in steps:
            if step.kind is StepKind.PRE:
                await _maybe_await(pre_timed())
            elif step.kind is StepKind.SKIP:
                await _maybe_await(skip_act())
            elif step.kind is StepKind.TIMED:
                await _maybe_await(timed(step.seconds))
            else:
                await _maybe_await(sleep(step.seconds))
    finally:
        steps.close()
    return stats


def spawn_rate_loop(
    target_rate: float,
    timed: Callable[[float], MaybeAsync],
    loop_predicate: LoopPredicate,
    skip_act: Optional[Callable[[], MaybeAsync]] = None,
    pre_timed: Optional[Callable[[], MaybeAsync]] = None,
    **kwargs: Any,
) -> "asyncio.Task[LoopStats]":
    """
    Start run_rate_loop_async() as a background asyncio Task and return it.
    Must be called from inside a running event loop.
    """
    name = kwargs.get("name") or "anon"
    return asyncio.create_task(
        run_rate_loop_async(target_rate, timed, loop_predicate, skip_act, pre_timed, **kwargs),
        name=f"rate_loop:{name}",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Configured runner
# ─────────────────────────────────────────────────────────────────────────────

class RateLoop:
    """
    Reusable loop configuration: default rate, lag threshold, sleep strategy
    and async wait mode. Each run() / run_async() call is an independent loop
    with its own clock origin, debt and counter.

        loop = RateLoop.from_settings(get_settings(), name="physics")
        stats = loop.run(step, iterations(1000), skip_act=drop_frame)
    """

    def __init__(
        self,
        target_rate: float = 60.0,
        *,
        lag_warn_s: Optional[float] = None,
        sleep_slack_s: float = 0.0,
        blocking_async_wait: bool = False,
        name: Optional[str] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        interval_ticks(target_rate)
        self.target_rate = target_rate
        self.lag_warn_s = lag_warn_s
        self.sleep_slack_s = sleep_slack_s
        self.blocking_async_wait = blocking_async_wait
        self.name = name
        self._clock = clock
        self._sleep = sleep or make_sleeper(sleep_slack_s)

    @classmethod
    def from_settings(cls, settings, name: Optional[str] = None, **overrides: Any) -> "RateLoop":
        cfg = settings.loop
        kwargs: dict[str, Any] = dict(
            target_rate=cfg.default_rate_hz,
            lag_warn_s=cfg.lag_warn_s,
            sleep_slack_s=cfg.sleep_slack_s,
            blocking_async_wait=cfg.async_wait_mode == "block",
            name=name,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    def run(
        self,
        timed: TimedFn,
        loop_predicate: LoopPredicate,
        skip_act: Optional[ActionFn] = None,
        pre_timed: Optional[ActionFn] = None,
        *,
        target_rate: Optional[float] = None,
        cancel: Optional[CancelSignal] = None,
    ) -> LoopStats:
        return run_rate_loop(
            target_rate if target_rate is not None else self.target_rate,
            timed,
            loop_predicate,
            skip_act,
            pre_timed,
            cancel=cancel,
            clock=self._clock,
            sleep=self._sleep,
            lag_warn_s=self.lag_warn_s,
            name=self.name,
        )

    async def run_async(
        self,
        timed: Callable[[float], MaybeAsync],
        loop_predicate: LoopPredicate,
        skip_act: Optional[Callable[[], MaybeAsync]] = None,
        pre_timed: Optional[Callable[[], MaybeAsync]] = None,
        *,
        target_rate: Optional[float] = None,
        cancel: Optional[CancelSignal] = None,
    ) -> LoopStats:
        return await run_rate_loop_async(
            target_rate if target_rate is not None else self.target_rate,
            timed,
            loop_predicate,
            skip_act,
            pre_timed,
            cancel=cancel,
            clock=self._clock,
            sleep=self._sleep if self.blocking_async_wait else None,
            blocking_wait=self.blocking_async_wait,
            lag_warn_s=self.lag_warn_s,
            name=self.name,
        )

    def __repr__(self) -> str:
        return (
            f"RateLoop(target_rate={self.target_rate!r}, name={self.name!r}, "
            f"blocking_async_wait={self.blocking_async_wait})"
        )
