from decimal import Decimal
from pathlib import Path

import pytest

from parallel_pantry.admission import AdmissionGate, AdmissionPolicy
from parallel_pantry.data import ClaimLedger, QueueStore
from parallel_pantry.domain import ValidationError


def _gate(tmp_path: Path, **policy) -> AdmissionGate:
    return AdmissionGate(
        QueueStore(str(tmp_path)),
        ClaimLedger(str(tmp_path)),
        AdmissionPolicy(**policy),
    )


def test_accepts_score_at_threshold(tmp_path: Path) -> None:
    gate = _gate(tmp_path, score_threshold=85)
    req = gate.submit({"recipientAddress": "0xAA", "score": 90, "reason": "empty fridge"})
    assert req.recipient_address == "0xAA"
    assert req.amount == "50"
    assert req.score == 90
    assert len(gate.queue) == 1

    gate.submit({"recipientAddress": "0xAB", "score": 85})
    assert len(gate.queue) == 2


@pytest.mark.parametrize("score", [0, 40, 84])
def test_score_too_low_leaves_queue_unchanged(tmp_path: Path, score: int) -> None:
    gate = _gate(tmp_path, score_threshold=85)
    with pytest.raises(ValidationError) as err:
        gate.submit({"recipientAddress": "0xBB", "score": score})
    assert err.value.code == "ScoreTooLow"
    assert len(gate.queue) == 0


@pytest.mark.parametrize(
    "body",
    [
        {"score": 90},
        {"recipientAddress": "", "score": 90},
        {"recipientAddress": "0xAA"},
        {"recipientAddress": "0xAA", "score": None},
    ],
)
def test_missing_fields(tmp_path: Path, body: dict) -> None:
    with pytest.raises(ValidationError) as err:
        _gate(tmp_path).submit(body)
    assert err.value.code == "MissingField"


@pytest.mark.parametrize(
    "body",
    [
        {"recipientAddress": "0xAA", "score": "high"},
        {"recipientAddress": "0xAA", "score": 140},
        {"recipientAddress": "0xAA", "score": True},
        {"recipientAddress": "0xAA", "score": 90, "amount": "-5"},
        {"recipientAddress": "0xAA", "score": 90, "amount": "lots"},
    ],
)
def test_invalid_fields(tmp_path: Path, body: dict) -> None:
    with pytest.raises(ValidationError) as err:
        _gate(tmp_path).submit(body)
    assert err.value.code == "InvalidField"


def test_claim_limit_reached(tmp_path: Path) -> None:
    gate = _gate(tmp_path, max_claims_per_address=1)
    gate.ledger.increment("0xcc")
    with pytest.raises(ValidationError) as err:
        gate.submit({"recipientAddress": "0xCC", "score": 95})
    assert err.value.code == "ClaimLimitReached"
    assert len(gate.queue) == 0


def test_duplicate_queued_recipient_rejected(tmp_path: Path) -> None:
    gate = _gate(tmp_path, max_claims_per_address=3)
    gate.submit({"recipientAddress": "0xDd", "score": 95})
    with pytest.raises(ValidationError) as err:
        gate.submit({"recipientAddress": "0xdD", "score": 99})
    assert err.value.code == "ClaimLimitReached"
    assert len(gate.queue) == 1


def test_duplicate_rejected_even_when_unlimited(tmp_path: Path) -> None:
    gate = _gate(tmp_path)
    gate.submit({"recipientAddress": "0xEE", "score": 95})
    with pytest.raises(ValidationError):
        gate.submit({"recipientAddress": "0xee", "score": 95})


def test_in_flight_recipient_counts_as_pending(tmp_path: Path) -> None:
    gate = AdmissionGate(
        QueueStore(str(tmp_path)),
        ClaimLedger(str(tmp_path)),
        AdmissionPolicy(),
        in_flight=lambda: {"0xff"},
    )
    with pytest.raises(ValidationError) as err:
        gate.submit({"recipientAddress": "0xFF", "score": 95})
    assert err.value.code == "ClaimLimitReached"


def test_explicit_amount_and_tiers(tmp_path: Path) -> None:
    gate = _gate(tmp_path, score_threshold=60, amount_policy="tiered")
    assert gate.submit({"recipientAddress": "0x01", "score": 95}).amount == "100"
    assert gate.submit({"recipientAddress": "0x02", "score": 80}).amount == "50"
    assert gate.submit({"recipientAddress": "0x03", "score": 61}).amount == "25"
    assert gate.submit({"recipientAddress": "0x04", "score": 61, "amount": "12.5"}).amount == "12.5"


def test_fixed_amount_from_policy(tmp_path: Path) -> None:
    gate = _gate(tmp_path, payout_amount=Decimal("20"))
    assert gate.submit({"recipientAddress": "0x05", "score": 90}).amount == "20"


def test_resubmission_after_drain_is_a_new_request(tmp_path: Path) -> None:
    gate = _gate(tmp_path)
    first = gate.submit({"recipientAddress": "0xAA", "score": 90})
    gate.queue.drain_all()
    second = gate.submit({"recipientAddress": "0xAA", "score": 90})
    assert second.id != first.id
    assert gate.queue.snapshot() == [second]
