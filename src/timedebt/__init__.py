"""
timedebt - fixed-rate loop driver with time-debt accounting.

    from timedebt import run_rate_loop, iterations
    stats = run_rate_loop(60.0, lambda debt: step(), iterations(600))
"""

from timedebt.cancellation import CancelSignal, CancelToken, forever, iterations, until_cancelled
from timedebt.clock import TICKS_PER_SECOND, make_sleeper, monotonic_ticks, precise_sleep
from timedebt.exceptions import ConfigError, InvalidRateError, TimeDebtError
from timedebt.loop import (
    LoopStats,
    RateLoop,
    Step,
    StepKind,
    interval_ticks,
    run_rate_loop,
    run_rate_loop_async,
    spawn_rate_loop,
)

__version__ = "1.0.0"

__all__ = [
    # Loop
    "run_rate_loop",
    "run_rate_loop_async",
    "spawn_rate_loop",
    "RateLoop",
    "LoopStats",
    "Step",
    "StepKind",
    "interval_ticks",
    # Cancellation
    "CancelSignal",
    "CancelToken",
    "until_cancelled",
    "iterations",
    "forever",
    # Clock
    "TICKS_PER_SECOND",
    "monotonic_ticks",
    "precise_sleep",
    "make_sleeper",
    # Errors
    "TimeDebtError",
    "InvalidRateError",
    "ConfigError",
]
