from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from parallel_pantry.data.json_store import JsonStore
from parallel_pantry.domain import PayoutRequest
from parallel_pantry.infra import RuntimeEventLogger


@dataclass(frozen=True)
class DeadLetter:
    request: PayoutRequest
    reason: str
    lane: int
    failed_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "reason": self.reason,
            "lane": self.lane,
            "failedAt": self.failed_at,
        }

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "DeadLetter":
        return cls(
            request=PayoutRequest.from_dict(row["request"]),
            reason=str(row.get("reason", "")),
            lane=int(row.get("lane", 0) or 0),
            failed_at=float(row.get("failedAt", 0.0) or 0.0),
        )


def _validate_letters(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise ValueError("dead-letter document is not a list")
    for row in payload:
        DeadLetter.from_dict(row)
    return payload


class DeadLetterStore:
    """Payouts that did not settle, kept apart from the live queue until resubmitted."""

    FILENAME = "dead-letter.json"

    def __init__(self, data_dir: str, *, events: RuntimeEventLogger | None = None):
        self._events = events
        self._store = JsonStore(
            Path(data_dir) / self.FILENAME,
            default=[],
            validate=_validate_letters,
            events=events,
        )

    def add(self, request: PayoutRequest, *, reason: str, lane: int = 0) -> DeadLetter:
        letter = DeadLetter(request=request, reason=reason, lane=lane, failed_at=time.time())
        self.extend([letter])
        return letter

    def extend(self, letters: list[DeadLetter]) -> None:
        if not letters:
            return
        with self._store.transaction() as rows:
            rows.extend(letter.to_dict() for letter in letters)
        if self._events is not None:
            for letter in letters:
                self._events.emit(
                    "dead_letter.add",
                    request_id=letter.request.id,
                    recipient=letter.request.recipient_address,
                    lane=letter.lane,
                    reason=letter.reason,
                )

    def snapshot(self) -> list[DeadLetter]:
        return [DeadLetter.from_dict(row) for row in self._store.read()]

    def drain_all(self) -> list[DeadLetter]:
        with self._store.locked():
            rows = self._store.read()
            if rows:
                self._store.write([])
        return [DeadLetter.from_dict(row) for row in rows]

    def __len__(self) -> int:
        return len(self._store.read())
