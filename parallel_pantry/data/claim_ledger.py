from __future__ import annotations

from pathlib import Path
from typing import Any

from parallel_pantry.data.json_store import JsonStore
from parallel_pantry.domain import normalize_address
from parallel_pantry.infra import RuntimeEventLogger


def _validate_counts(payload: Any) -> dict[str, int]:
    if not isinstance(payload, dict):
        raise ValueError("claim ledger document is not an object")
    out: dict[str, int] = {}
    for address, count in payload.items():
        n = int(count)
        if n < 0:
            raise ValueError(f"negative claim count for {address}")
        out[normalize_address(address)] = n
    return out


class ClaimLedger:
    """Per-recipient count of confirmed payouts. Never decremented.

    ``increment`` is not idempotent: call it once per confirmed transfer.
    """

    FILENAME = "claim-ledger.json"

    def __init__(self, data_dir: str, *, events: RuntimeEventLogger | None = None):
        self._store = JsonStore(
            Path(data_dir) / self.FILENAME,
            default={},
            validate=_validate_counts,
            events=events,
        )

    def increment(self, address: str) -> int:
        key = normalize_address(address)
        with self._store.transaction() as counts:
            counts[key] = int(counts.get(key, 0)) + 1
            return counts[key]

    def count_for(self, address: str) -> int:
        return int(self._store.read().get(normalize_address(address), 0))

    def counts(self) -> dict[str, int]:
        return dict(self._store.read())
