import asyncio
from pathlib import Path

from conftest import GatedExecutor, RecordingExecutor

from parallel_pantry.admission import AdmissionGate, AdmissionPolicy
from parallel_pantry.data import ClaimLedger, DeadLetterStore, FileLock, QueueStore
from parallel_pantry.domain import ConfigurationError, PersistenceError
from parallel_pantry.settlement import LaneAllocator, SettlementCoordinator


def _wire(tmp_path: Path, executor, **policy):
    queue = QueueStore(str(tmp_path))
    ledger = ClaimLedger(str(tmp_path))
    dead = DeadLetterStore(str(tmp_path))
    coord = SettlementCoordinator(
        queue, ledger, executor, LaneAllocator(str(tmp_path)),
        dead_letters=dead, stagger_ms=0,
    )
    gate = AdmissionGate(
        queue, ledger, AdmissionPolicy(**policy), in_flight=coord.in_flight_recipients
    )
    return gate, coord


def test_single_payout_scenario(tmp_path: Path) -> None:
    ex = RecordingExecutor()
    gate, coord = _wire(tmp_path, ex, score_threshold=85)
    gate.submit({"recipientAddress": "0xAA", "score": 90, "reason": "gas gauge empty"})
    assert len(gate.queue) == 1

    result = asyncio.run(coord.run_round())
    assert result.status == "settled"
    assert result.total_processed == 1
    assert result.successful == 1
    assert gate.ledger.count_for("0xaa") == 1
    assert len(gate.queue) == 0
    assert ex.calls == [("0xAA", "50", 1, "gas gauge empty")]
    assert coord.state == "IDLE"


def test_n_requests_get_n_distinct_lanes_concurrently(tmp_path: Path) -> None:
    ex = RecordingExecutor(delay=0.02)
    gate, coord = _wire(tmp_path, ex)
    for i in range(6):
        gate.submit({"recipientAddress": f"0x{i:02x}", "score": 90})

    result = asyncio.run(coord.run_round())
    lanes = [lane for _, _, lane, _ in ex.calls]
    assert len(ex.calls) == 6
    assert len(set(lanes)) == 6
    assert [o.lane for o in result.results] == [1, 2, 3, 4, 5, 6]
    assert [o.recipient_address for o in result.results] == [f"0x{i:02x}" for i in range(6)]
    assert ex.max_active == 6

    gate.submit({"recipientAddress": "0x99", "score": 90})
    second = asyncio.run(coord.run_round())
    assert [o.lane for o in second.results] == [7]


def test_failed_transfer_is_isolated_and_dead_lettered(tmp_path: Path) -> None:
    ex = RecordingExecutor(fail_for={"0xbad"})
    gate, coord = _wire(tmp_path, ex)
    for addr in ("0x01", "0xBAD", "0x02"):
        gate.submit({"recipientAddress": addr, "score": 90})

    result = asyncio.run(coord.run_round())
    assert result.total_processed == 3
    assert result.successful == 2
    assert result.failed == 1
    assert result.total_processed == result.successful + result.failed
    assert sum(gate.ledger.counts().values()) == result.successful
    bad = [o for o in result.results if not o.success][0]
    assert "reverted" in bad.error
    assert gate.ledger.count_for("0xbad") == 0
    assert len(gate.queue) == 0

    letters = coord.dead_letters.snapshot()
    assert [d.request.recipient_address for d in letters] == ["0xBAD"]
    assert letters[0].lane == bad.lane


def test_unexpected_executor_exception_is_captured(tmp_path: Path) -> None:
    class Broken(RecordingExecutor):
        async def execute(self, recipient_address, amount, lane, memo):
            if recipient_address == "0x02":
                raise KeyError("boom")
            return await super().execute(recipient_address, amount, lane, memo)

    gate, coord = _wire(tmp_path, Broken())
    gate.submit({"recipientAddress": "0x01", "score": 90})
    gate.submit({"recipientAddress": "0x02", "score": 90})
    result = asyncio.run(coord.run_round())
    assert result.status == "settled"
    assert [o.success for o in result.results] == [True, False]
    assert "KeyError" in result.results[1].error


def test_empty_queue_round(tmp_path: Path) -> None:
    ex = RecordingExecutor()
    _, coord = _wire(tmp_path, ex)
    result = asyncio.run(coord.run_round())
    assert result.status == "empty"
    assert result.to_dict()["skipped"] is True
    assert ex.calls == []
    assert not coord.busy


def test_trigger_while_round_in_flight_is_skipped(tmp_path: Path) -> None:
    async def scenario():
        ex = GatedExecutor()
        gate, coord = _wire(tmp_path, ex)
        gate.submit({"recipientAddress": "0x01", "score": 90})
        gate.submit({"recipientAddress": "0x02", "score": 90})

        first = asyncio.create_task(coord.run_round())
        await ex.started.wait()
        assert coord.busy

        second = await coord.run_round()
        # admission keeps working mid-round; in-flight recipients count as pending
        gate.submit({"recipientAddress": "0x03", "score": 90})
        in_flight = set(coord.in_flight_recipients())

        ex.release.set()
        return second, await first, gate, in_flight

    second, first, gate, in_flight = asyncio.run(scenario())
    assert second.status == "skipped"
    assert second.to_dict() == {
        "success": True,
        "skipped": True,
        "message": "Settlement round already in flight.",
    }
    assert first.total_processed == 2
    assert first.successful == 2
    assert in_flight == {"0x01", "0x02"}
    assert [r.recipient_address for r in gate.queue.snapshot()] == ["0x03"]


def test_missing_signer_aborts_before_drain(tmp_path: Path) -> None:
    class Unconfigured(RecordingExecutor):
        def preflight(self) -> None:
            raise ConfigurationError("AI_AGENT_PRIVATE_KEY is not set")

    ex = Unconfigured()
    gate, coord = _wire(tmp_path, ex)
    gate.submit({"recipientAddress": "0x01", "score": 90})

    result = asyncio.run(coord.run_round())
    assert result.status == "error"
    assert "AI_AGENT_PRIVATE_KEY" in result.error
    assert ex.calls == []
    assert len(gate.queue) == 1
    assert not coord.busy


def test_ledger_failure_is_round_fatal_but_keeps_results(tmp_path: Path, monkeypatch) -> None:
    ex = RecordingExecutor()
    gate, coord = _wire(tmp_path, ex)
    gate.submit({"recipientAddress": "0x01", "score": 90})
    gate.submit({"recipientAddress": "0x02", "score": 90})

    def fail(address):
        raise PersistenceError("ledger unwritable")

    monkeypatch.setattr(coord.ledger, "increment", fail)
    result = asyncio.run(coord.run_round())
    assert result.status == "error"
    assert "ledger" in result.error
    assert result.successful == 2
    assert result.to_dict()["success"] is False
    assert len(result.to_dict()["results"]) == 2
    # paid transfers must not be queued for a second payment
    assert len(coord.dead_letters) == 0
    assert not coord.busy


def test_lane_allocation_failure_dead_letters_drained_requests(tmp_path: Path, monkeypatch) -> None:
    ex = RecordingExecutor()
    gate, coord = _wire(tmp_path, ex)
    gate.submit({"recipientAddress": "0x01", "score": 90})

    def fail(count):
        raise PersistenceError("lanes unwritable")

    monkeypatch.setattr(coord.lanes, "allocate", fail)
    result = asyncio.run(coord.run_round())
    assert result.status == "error"
    assert ex.calls == []
    assert [d.request.recipient_address for d in coord.dead_letters.snapshot()] == ["0x01"]
    assert not coord.busy


def test_round_failure_after_dispatch_keeps_assigned_lanes(tmp_path: Path, monkeypatch) -> None:
    ex = RecordingExecutor(fail_for={"0x01", "0x02"})
    gate, coord = _wire(tmp_path, ex)
    gate.submit({"recipientAddress": "0x01", "score": 90})
    gate.submit({"recipientAddress": "0x02", "score": 90})

    def crash(drained, result):
        raise RuntimeError("ledger settle crashed")

    monkeypatch.setattr(coord, "_settle_ledger", crash)
    result = asyncio.run(coord.run_round())
    assert result.status == "error"
    letters = coord.dead_letters.snapshot()
    assert [(d.request.recipient_address, d.lane) for d in letters] == [("0x01", 1), ("0x02", 2)]
    assert all(d.reason.startswith("round aborted") for d in letters)
    assert not coord.busy


def test_round_lock_held_elsewhere_skips_without_draining(tmp_path: Path) -> None:
    ex = RecordingExecutor()
    gate, _ = _wire(tmp_path, ex)
    gate.submit({"recipientAddress": "0x01", "score": 90})
    coord = SettlementCoordinator(
        gate.queue, gate.ledger, ex, LaneAllocator(str(tmp_path)),
        stagger_ms=0, round_lock=FileLock(tmp_path / "settlement.lock"),
    )
    other = FileLock(tmp_path / "settlement.lock")
    assert other.acquire(blocking=False)
    try:
        skipped = asyncio.run(coord.run_round())
    finally:
        other.release()
    settled = asyncio.run(coord.run_round())

    assert skipped.status == "skipped"
    assert settled.successful == 1
    assert [c[0] for c in ex.calls] == ["0x01"]
    assert not coord._round_lock.held
