from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from parallel_pantry.admission.audit import payout_for_score
from parallel_pantry.data import ClaimLedger, QueueStore
from parallel_pantry.domain import (
    CLAIM_LIMIT_REACHED,
    INVALID_FIELD,
    MISSING_FIELD,
    SCORE_TOO_LOW,
    PayoutRequest,
    ValidationError,
    new_request_id,
    normalize_address,
    parse_amount,
)
from parallel_pantry.infra import RuntimeEventLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionPolicy:
    score_threshold: int = 85
    max_claims_per_address: int | None = None
    payout_amount: Decimal = Decimal("50")
    amount_policy: str = "fixed"


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_request(
    body: dict[str, Any],
    policy: AdmissionPolicy,
) -> tuple[str, int, Decimal]:
    """Field and threshold checks that need no stored state."""
    address = body.get("recipientAddress")
    score_raw = body.get("score")
    if _blank(address):
        raise ValidationError(MISSING_FIELD, "recipientAddress is required")
    if _blank(score_raw):
        raise ValidationError(MISSING_FIELD, "score is required")
    if isinstance(score_raw, bool):
        raise ValidationError(INVALID_FIELD, "score must be a number")
    try:
        score = int(float(score_raw))
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(INVALID_FIELD, "score must be a number") from None
    if not 0 <= score <= 100:
        raise ValidationError(INVALID_FIELD, "score must be between 0 and 100")
    if score < policy.score_threshold:
        raise ValidationError(
            SCORE_TOO_LOW,
            f"AI Auditor requires a score of {policy.score_threshold}+ for instant relief.",
        )

    amount_raw = body.get("amount")
    if not _blank(amount_raw):
        amount = parse_amount(amount_raw)
        if amount is None:
            raise ValidationError(INVALID_FIELD, "amount must be a positive decimal")
    elif policy.amount_policy == "tiered":
        amount = payout_for_score(score)
        if amount <= 0:
            raise ValidationError(SCORE_TOO_LOW, "score does not qualify for a payout tier")
    else:
        amount = policy.payout_amount
    return str(address).strip(), score, amount


class AdmissionGate:
    """Validates payout requests and appends the passing ones to the queue.

    The duplicate and claim-limit checks run under the queue lock together with
    the append, so two concurrent submissions for one recipient cannot both
    pass. Recipients whose transfer is in flight in the current round count as
    queued.
    """

    def __init__(
        self,
        queue: QueueStore,
        ledger: ClaimLedger,
        policy: AdmissionPolicy,
        *,
        in_flight: Callable[[], Iterable[str]] | None = None,
        events: RuntimeEventLogger | None = None,
    ):
        self.queue = queue
        self.ledger = ledger
        self.policy = policy
        self._in_flight = in_flight
        self._events = events

    def _reject(self, body: dict[str, Any], err: ValidationError) -> None:
        logger.info("rejected payout for %s: %s", body.get("recipientAddress"), err.code)
        if self._events is not None:
            self._events.emit(
                "admission.rejected",
                recipient=str(body.get("recipientAddress") or ""),
                code=err.code,
            )

    def _check_claims(self, address: str) -> None:
        key = normalize_address(address)
        limit = self.policy.max_claims_per_address
        count = self.ledger.count_for(key) if limit is not None else 0
        if limit is not None and count >= limit:
            raise ValidationError(
                CLAIM_LIMIT_REACHED,
                f"{address} has already received {count} payout(s); limit is {limit}",
            )
        pending = set(self._in_flight()) if self._in_flight is not None else set()
        if key in pending or self.queue.contains_recipient(key):
            raise ValidationError(CLAIM_LIMIT_REACHED, f"{address} already has a pending payout")

    def submit(self, body: dict[str, Any]) -> PayoutRequest:
        try:
            address, score, amount = check_request(body, self.policy)
            with self.queue.locked():
                self._check_claims(address)
                request = PayoutRequest(
                    id=new_request_id(),
                    recipient_address=address,
                    amount=str(amount),
                    score=score,
                    reason=str(body.get("reason") or ""),
                    timestamp=time.time(),
                )
                self.queue.append(request)
        except ValidationError as err:
            self._reject(body, err)
            raise

        logger.info("queued payout of %s for %s (score=%s)", request.amount, address, score)
        if self._events is not None:
            self._events.emit(
                "admission.accepted",
                request_id=request.id,
                recipient=address,
                amount=request.amount,
                score=score,
            )
        return request
