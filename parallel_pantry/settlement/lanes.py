from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from parallel_pantry.data import JsonStore
from parallel_pantry.infra import RuntimeEventLogger


def _validate_lanes(payload: Any) -> dict[str, int]:
    if not isinstance(payload, dict):
        raise ValueError("lane document is not an object")
    next_lane = int(payload["nextLane"])
    rounds = int(payload.get("rounds", 0))
    if next_lane < 1 or rounds < 0:
        raise ValueError("lane counters out of range")
    return {"nextLane": next_lane, "rounds": rounds}


class LaneAllocator:
    """Hands out lane ids from a persisted monotonic counter.

    Each round reserves a contiguous block and the counter is written before
    any transfer is dispatched, so a lane id is never reused while the file
    survives. If the file is lost or corrupt the counter reseeds from
    ``unix_seconds * 1000``: that stays above every earlier id unless more
    than 1000 lanes per elapsed second were issued since the previous reseed,
    or the wall clock moved backwards.
    """

    FILENAME = "lanes.json"

    def __init__(
        self,
        data_dir: str,
        *,
        events: RuntimeEventLogger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._store = JsonStore(
            Path(data_dir) / self.FILENAME,
            default={"nextLane": 1, "rounds": 0},
            validate=_validate_lanes,
            on_corrupt=self._reseed,
            events=events,
        )

    def _reseed(self) -> dict[str, int]:
        return {"nextLane": int(self._clock()) * 1000, "rounds": 0}

    def allocate(self, count: int) -> tuple[int, list[int]]:
        """Reserve ``count`` lanes; returns (round number, lane ids in drain order)."""
        with self._store.transaction() as doc:
            start = int(doc["nextLane"])
            doc["nextLane"] = start + max(0, int(count))
            doc["rounds"] = int(doc["rounds"]) + 1
            round_no = doc["rounds"]
        return round_no, list(range(start, start + max(0, int(count))))

    def peek(self) -> dict[str, int]:
        return dict(self._store.read())
