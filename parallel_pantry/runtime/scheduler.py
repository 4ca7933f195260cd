from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from parallel_pantry.domain import BatchResult


def seconds_until_next_round(cycle_sec: float, now: float | None = None) -> float:
    """Rounds fire on wall-clock multiples of the cycle, so every process agrees on the boundary."""
    cycle = max(1.0, float(cycle_sec))
    now = time.time() if now is None else now
    return cycle - (now % cycle)


class RoundScheduler:
    """Triggers a settlement round at every cycle boundary."""

    def __init__(
        self,
        trigger: Callable[[], Awaitable[BatchResult]],
        *,
        cycle_sec: float,
        log,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.trigger = trigger
        self.cycle_sec = cycle_sec
        self.log = log
        self._sleep = sleep

    async def tick(self) -> BatchResult:
        result = await self.trigger()
        if result.status == "settled":
            self.log.info(
                "relief round complete: %s/%s paid",
                result.successful, result.total_processed,
            )
        elif result.status == "error":
            self.log.error("relief round error: %s", result.error)
        return result

    async def run(self) -> None:
        while True:
            await self._sleep(seconds_until_next_round(self.cycle_sec))
            await self.tick()
