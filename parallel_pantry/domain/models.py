from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any


MISSING_FIELD = "MissingField"
INVALID_FIELD = "InvalidField"
SCORE_TOO_LOW = "ScoreTooLow"
CLAIM_LIMIT_REACHED = "ClaimLimitReached"


def normalize_address(address: str) -> str:
    return str(address).strip().lower()


def new_request_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def parse_amount(raw: Any) -> Decimal | None:
    """Positive decimal amount, or None when unparseable or not positive."""
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


@dataclass(frozen=True)
class PayoutRequest:
    id: str
    recipient_address: str
    amount: str
    score: int
    reason: str
    timestamp: float

    @property
    def recipient_key(self) -> str:
        return normalize_address(self.recipient_address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipientAddress": self.recipient_address,
            "amount": self.amount,
            "score": self.score,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "PayoutRequest":
        return cls(
            id=str(row["id"]),
            recipient_address=str(row["recipientAddress"]),
            amount=str(row["amount"]),
            score=int(row["score"]),
            reason=str(row.get("reason", "") or ""),
            timestamp=float(row["timestamp"]),
        )


@dataclass(frozen=True)
class TransferOutcome:
    recipient_address: str
    lane: int
    success: bool
    transaction_id: str = ""
    error: str = ""
    request_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "recipient": self.recipient_address,
            "lane": self.lane,
            "success": self.success,
        }
        if self.success:
            out["hash"] = self.transaction_id
        else:
            out["error"] = self.error
        return out


@dataclass
class BatchResult:
    status: str
    round_id: int = 0
    results: list[TransferOutcome] = field(default_factory=list)
    error: str = ""

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict[str, Any]:
        if self.status == "skipped":
            return {"success": True, "skipped": True, "message": "Settlement round already in flight."}
        if self.status == "empty":
            return {"success": True, "skipped": True, "message": "No pending payouts in queue."}
        out: dict[str, Any] = {
            "success": not self.error,
            "round": self.round_id,
            "totalProcessed": self.total_processed,
            "successful": self.successful,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "message": (
                f"Processed {self.successful}/{self.total_processed} relief distributions in parallel lanes."
            ),
        }
        if self.error:
            out["error"] = self.error
        return out
