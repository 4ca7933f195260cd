from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class TransferExecutor(Protocol):
    """Sends one payout in one lane. Every failure surfaces as TransferError."""

    def preflight(self) -> None:
        ...

    async def execute(self, recipient_address: str, amount: str, lane: int, memo: str) -> str:
        ...


@dataclass
class DryRunTransferExecutor:
    """Executor that never touches the chain; returns a deterministic fake hash."""

    latency_sec: float = 0.0
    sent: list[tuple[str, str, int, str]] = field(default_factory=list)

    def preflight(self) -> None:
        return None

    async def execute(self, recipient_address: str, amount: str, lane: int, memo: str) -> str:
        if self.latency_sec > 0:
            await asyncio.sleep(self.latency_sec)
        self.sent.append((recipient_address, amount, lane, memo))
        digest = hashlib.sha256(f"{lane}:{recipient_address}:{amount}".encode()).hexdigest()
        return f"0xdryrun{digest[:58]}"
