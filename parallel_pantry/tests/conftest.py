from __future__ import annotations

import asyncio
from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest

from parallel_pantry.config import Settings
from parallel_pantry.domain import TransferError
from parallel_pantry.service import ReliefService


def base_settings(data_dir: Path, **overrides) -> Settings:
    s = Settings(
        data_dir=str(data_dir),
        log_level="INFO",
        dry_run=True,
        api_host="127.0.0.1",
        api_port=8080,
        scheduler_enabled=False,
        round_interval_sec=60.0,
        score_threshold=85,
        max_claims_per_address=None,
        payout_amount=Decimal("50"),
        amount_policy="fixed",
        submit_stagger_ms=0.0,
        rpc_urls=("http://127.0.0.1:8545",),
        chain_id=42431,
        vault_address="0x0b3012EdaA34872d536CeE2f80D4BfFD6e854B6A",
        token_decimals=6,
        gas_limit=200_000,
        priority_fee_gwei=1.0,
        receipt_timeout_sec=60.0,
    )
    return replace(s, **overrides)


class RecordingExecutor:
    """Fake chain: records lanes, tracks concurrency, fails chosen recipients."""

    def __init__(self, *, fail_for: set[str] | None = None, delay: float = 0.0):
        self.fail_for = {a.lower() for a in (fail_for or set())}
        self.delay = delay
        self.calls: list[tuple[str, str, int, str]] = []
        self.active = 0
        self.max_active = 0

    def preflight(self) -> None:
        return None

    async def execute(self, recipient_address: str, amount: str, lane: int, memo: str) -> str:
        self.calls.append((recipient_address, amount, lane, memo))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if recipient_address.lower() in self.fail_for:
                raise TransferError("execution reverted: vault balance too low")
            return f"0x{lane:064x}"
        finally:
            self.active -= 1


class GatedExecutor(RecordingExecutor):
    """Holds every transfer until ``release`` is set. Build inside a running loop."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, recipient_address: str, amount: str, lane: int, memo: str) -> str:
        self.started.set()
        await self.release.wait()
        return await super().execute(recipient_address, amount, lane, memo)


@pytest.fixture
def make_service(tmp_path: Path):
    def _make(executor=None, **overrides) -> ReliefService:
        settings = base_settings(tmp_path, **overrides)
        return ReliefService.from_settings(settings, executor=executor or RecordingExecutor())

    return _make
