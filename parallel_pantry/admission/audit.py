"""Seam for the external AI audit capability.

The auditor scores a photo for visible signs of need (0-100). How the score
is produced is not our concern; this module only fixes the shape of the reply
and the amount tiers the auditor's prompt describes.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from decimal import Decimal
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")

# (min score, payout) checked top-down.
PAYOUT_TIERS: tuple[tuple[int, Decimal], ...] = (
    (90, Decimal("100")),
    (75, Decimal("50")),
    (60, Decimal("25")),
)


@dataclass(frozen=True)
class AuditResult:
    score: int
    reason: str
    urgency: str = "low"
    payout_amount: Decimal = Decimal("0")


@runtime_checkable
class Auditor(Protocol):
    async def audit(self, image: bytes | str) -> AuditResult:
        ...


def payout_for_score(score: int) -> Decimal:
    for floor, amount in PAYOUT_TIERS:
        if score >= floor:
            return amount
    return Decimal("0")


def parse_audit_reply(text: str) -> AuditResult:
    """Parse the auditor's raw reply, tolerating markdown code fences."""
    cleaned = _FENCE_RE.sub("", str(text or "")).strip()
    try:
        raw: Any = json.loads(cleaned)
    except ValueError as exc:
        raise ValueError(f"audit reply is not valid JSON: {cleaned[:80]!r}") from exc
    if not isinstance(raw, dict) or "score" not in raw:
        raise ValueError("audit reply has no score")
    score = max(0, min(100, int(raw["score"])))
    payout = raw.get("payoutAmount")
    if isinstance(payout, (int, float)) and not isinstance(payout, bool):
        amount = Decimal(str(payout))
    else:
        amount = Decimal("50") if score >= 60 else Decimal("0")
    return AuditResult(
        score=score,
        reason=str(raw.get("reason", "") or ""),
        urgency=str(raw.get("urgency", "low") or "low"),
        payout_amount=amount,
    )


class ReplyAuditor:
    """Adapts a model call that returns raw reply text into an ``Auditor``."""

    def __init__(self, complete: Callable[[bytes | str], Awaitable[str]]):
        self._complete = complete

    async def audit(self, image: bytes | str) -> AuditResult:
        return parse_audit_reply(await self._complete(image))
