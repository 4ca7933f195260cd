from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from parallel_pantry.infra import RuntimeEventLogger


@dataclass
class LoopHealth:
    name: str
    restarts: int = 0
    last_error: str = ""
    alive: bool = False


class LoopSupervisor:
    """Keeps long-running relief loops alive, restarting a crashed loop after a growing delay."""

    def __init__(
        self,
        *,
        base_delay: float = 2.0,
        max_delay: float = 20.0,
        events: RuntimeEventLogger | None = None,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.events = events
        self.health: dict[str, LoopHealth] = {}

    def summary(self) -> dict[str, dict]:
        return {
            name: {"alive": h.alive, "restarts": h.restarts, "lastError": h.last_error}
            for name, h in self.health.items()
        }

    async def run_forever(self, name: str, fn: Callable[[], Awaitable[None]], log) -> None:
        health = self.health.setdefault(name, LoopHealth(name=name))
        delay = self.base_delay
        while True:
            health.alive = True
            try:
                await fn()
                log.warning("loop %s returned; restarting", name)
            except asyncio.CancelledError:
                health.alive = False
                raise
            except Exception as exc:
                health.restarts += 1
                health.last_error = str(exc)
                log.exception("loop %s crashed (restart #%s): %s", name, health.restarts, exc)
                if self.events is not None:
                    self.events.emit("loop.crash", name=name, error=str(exc), restarts=health.restarts)
            health.alive = False
            await asyncio.sleep(delay)
            delay = min(self.max_delay, max(self.base_delay, delay * 1.5))
