"""
Time control for a probe run.

All durations in the workload (think pauses, backoff, stage lengths) are
expressed in abstract time-units. One unit is one second at ``time_scale=1``;
a smaller scale compresses the whole run, which is how quick smoke runs and
the scheduler tests replay the real stage shapes.
"""

import asyncio
import time


class Clock:
    """Cooperative sleep and monotonic time, both measured in time-units."""

    def __init__(self, time_scale: float = 1.0):
        if time_scale <= 0:
            raise ValueError(f"time_scale must be positive, got {time_scale}")
        self.time_scale = time_scale

    async def sleep(self, units: float) -> None:
        if units <= 0:
            return
        await asyncio.sleep(units * self.time_scale)

    def now(self) -> float:
        return time.monotonic() / self.time_scale

    def to_seconds(self, units: float) -> float:
        return units * self.time_scale
