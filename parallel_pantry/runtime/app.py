from __future__ import annotations

import asyncio

from parallel_pantry.api import run_api
from parallel_pantry.config import Settings
from parallel_pantry.infra import get_logger
from parallel_pantry.runtime.scheduler import RoundScheduler
from parallel_pantry.runtime.supervisor import LoopSupervisor
from parallel_pantry.service import ReliefService


class App:
    """Top-level orchestrator: HTTP API plus the relief round scheduler."""

    def __init__(self, settings: Settings, service: ReliefService | None = None):
        self.settings = settings
        self.log = get_logger("parallel-pantry", settings.log_level)
        get_logger("parallel_pantry", settings.log_level)
        self.service = service if service is not None else ReliefService.from_settings(settings)
        self.supervisor = LoopSupervisor(events=self.service.events)

    async def run(self) -> None:
        self.log.info(
            "starting relief service dry_run=%s threshold=%s round=%ss claim_limit=%s",
            self.settings.dry_run,
            self.settings.score_threshold,
            self.settings.round_interval_sec,
            self.settings.max_claims_per_address or "unlimited",
        )
        loops = [
            run_api(
                self.service,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level=self.settings.log_level,
                supervisor=self.supervisor,
            )
        ]
        if self.settings.scheduler_enabled:
            scheduler = RoundScheduler(
                self.service.settle,
                cycle_sec=self.settings.round_interval_sec,
                log=self.log,
            )
            loops.append(self.supervisor.run_forever("relief-rounds", scheduler.run, self.log))
        await asyncio.gather(*loops)


def run_main(settings: Settings) -> None:
    asyncio.run(App(settings).run())
