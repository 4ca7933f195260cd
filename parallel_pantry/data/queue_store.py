from __future__ import annotations

from pathlib import Path
from typing import Any

from parallel_pantry.data.json_store import JsonStore
from parallel_pantry.domain import PayoutRequest, normalize_address
from parallel_pantry.infra import RuntimeEventLogger


def _validate_queue(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise ValueError("queue document is not a list")
    for row in payload:
        PayoutRequest.from_dict(row)
    return payload


class QueueStore:
    """Durable ordered queue of pending payout requests (oldest first)."""

    FILENAME = "payout-queue.json"

    def __init__(self, data_dir: str, *, events: RuntimeEventLogger | None = None):
        self._store = JsonStore(
            Path(data_dir) / self.FILENAME,
            default=[],
            validate=_validate_queue,
            events=events,
        )

    @property
    def path(self) -> Path:
        return self._store.path

    def locked(self):
        return self._store.locked()

    def append(self, request: PayoutRequest) -> None:
        with self._store.transaction() as rows:
            rows.append(request.to_dict())

    def snapshot(self) -> list[PayoutRequest]:
        return [PayoutRequest.from_dict(row) for row in self._store.read()]

    def drain_all(self) -> list[PayoutRequest]:
        """Remove and return every pending request as one step."""
        with self._store.locked():
            rows = self._store.read()
            if rows:
                self._store.write([])
        return [PayoutRequest.from_dict(row) for row in rows]

    def contains_recipient(self, address: str) -> bool:
        key = normalize_address(address)
        return any(req.recipient_key == key for req in self.snapshot())

    def __len__(self) -> int:
        return len(self._store.read())
