from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from parallel_pantry.data import ClaimLedger, DeadLetter, DeadLetterStore, FileLock, QueueStore
from parallel_pantry.domain import (
    BatchResult,
    ConcurrencyConflict,
    ConfigurationError,
    PayoutRequest,
    PersistenceError,
    TransferError,
    TransferOutcome,
)
from parallel_pantry.execution import TransferExecutor
from parallel_pantry.infra import RuntimeEventLogger
from parallel_pantry.settlement.lanes import LaneAllocator

logger = logging.getLogger(__name__)

IDLE = "IDLE"
LOCKED = "LOCKED"
DRAINING = "DRAINING"
DISPATCHING = "DISPATCHING"
COLLECTING = "COLLECTING"
SETTLING_LEDGER = "SETTLING_LEDGER"


class SettlementCoordinator:
    """Runs settlement rounds: drain the queue, pay every request in its own lane, credit claims.

    At most one round is in flight. A trigger that arrives while a round holds
    the lock is skipped, not queued. With ``round_lock`` set the same holds
    across processes sharing the data dir (server scheduler and CLI ``settle``).
    Transfers within a round run concurrently and each failure stays with its
    own request.
    """

    def __init__(
        self,
        queue: QueueStore,
        ledger: ClaimLedger,
        executor: TransferExecutor,
        lanes: LaneAllocator,
        *,
        dead_letters: DeadLetterStore | None = None,
        stagger_ms: float = 50.0,
        round_lock: FileLock | None = None,
        events: RuntimeEventLogger | None = None,
    ):
        self.queue = queue
        self.ledger = ledger
        self.executor = executor
        self.lanes = lanes
        self.dead_letters = dead_letters
        self.stagger_sec = max(0.0, float(stagger_ms)) / 1000.0
        self._events = events
        self._lock = asyncio.Lock()
        self._round_lock = round_lock
        self._in_flight: frozenset[str] = frozenset()
        self.state = IDLE

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def in_flight_recipients(self) -> frozenset[str]:
        return self._in_flight

    def _emit(self, event: str, **fields) -> None:
        if self._events is None:
            return
        try:
            self._events.emit(event, **fields)
        except OSError as exc:
            logger.warning("event log write failed event=%s err=%s", event, exc)

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        # locked() and acquire() run without yielding in between
        if self._lock.locked():
            raise ConcurrencyConflict("settlement round already in flight")
        await self._lock.acquire()
        try:
            if self._round_lock is not None and not self._round_lock.acquire(blocking=False):
                raise ConcurrencyConflict("settlement round in flight in another process")
            try:
                self.state = LOCKED
                yield
            finally:
                self._in_flight = frozenset()
                self.state = IDLE
                if self._round_lock is not None:
                    self._round_lock.release()
        finally:
            self._lock.release()

    async def run_round(self) -> BatchResult:
        try:
            async with self._exclusive():
                return await self._settle()
        except ConcurrencyConflict:
            logger.info("settlement round skipped: previous round still in flight")
            self._emit("round.skipped")
            return BatchResult(status="skipped")
        except PersistenceError as exc:
            logger.error("settlement round lock unavailable: %s", exc)
            self._emit("round.error", stage="lock", error=str(exc))
            return BatchResult(status="error", error=f"round lock unavailable: {exc}")

    async def _settle(self) -> BatchResult:
        try:
            self.executor.preflight()
        except ConfigurationError as exc:
            logger.error("settlement aborted before dispatch: %s", exc)
            self._emit("round.error", stage="preflight", error=str(exc))
            return BatchResult(status="error", error=f"configuration error: {exc}")

        self.state = DRAINING
        try:
            drained = self.queue.drain_all()
        except PersistenceError as exc:
            logger.error("settlement aborted, queue drain failed: %s", exc)
            self._emit("round.error", stage="drain", error=str(exc))
            return BatchResult(status="error", error=f"queue drain failed: {exc}")
        if not drained:
            self._emit("round.empty")
            return BatchResult(status="empty")

        self._in_flight = frozenset(req.recipient_key for req in drained)
        outcomes: list[TransferOutcome] = []
        lane_of: dict[str, int] = {}
        try:
            round_no, lane_ids = self.lanes.allocate(len(drained))
            lane_of = {req.id: lane for req, lane in zip(drained, lane_ids)}
            logger.info(
                "round=%s processing %s payout(s) in lanes %s..%s",
                round_no, len(drained), lane_ids[0], lane_ids[-1],
            )
            self._emit("round.start", round=round_no, count=len(drained), first_lane=lane_ids[0])

            self.state = DISPATCHING
            tasks = [
                asyncio.create_task(self._dispatch(i, req, lane), name=f"lane:{lane}")
                for i, (req, lane) in enumerate(zip(drained, lane_ids))
            ]
            self.state = COLLECTING
            outcomes = list(await asyncio.gather(*tasks))

            self.state = SETTLING_LEDGER
            result = BatchResult(status="settled", round_id=round_no, results=outcomes)
            self._settle_ledger(drained, result)
        except Exception as exc:
            logger.exception("settlement round failed: %s", exc)
            self._emit("round.error", stage=self.state, error=str(exc))
            settled = {o.request_id for o in outcomes if o.success}
            self._dead_letter(
                [(req, lane_of.get(req.id, 0)) for req in drained if req.id not in settled],
                reason=f"round aborted: {exc}",
            )
            return BatchResult(status="error", results=outcomes, error=f"round failed: {exc}")

        logger.info(
            "round=%s done: %s/%s succeeded",
            result.round_id, result.successful, result.total_processed,
        )
        self._emit(
            "round.done",
            round=result.round_id,
            total=result.total_processed,
            successful=result.successful,
            failed=result.failed,
            error=result.error,
        )
        return result

    async def _dispatch(self, index: int, request: PayoutRequest, lane: int) -> TransferOutcome:
        if index and self.stagger_sec > 0:
            await asyncio.sleep(self.stagger_sec * index)
        logger.info("[lane %s] sending %s to %s", lane, request.amount, request.recipient_address)
        try:
            tx_id = await self.executor.execute(
                request.recipient_address, request.amount, lane, request.reason
            )
        except TransferError as exc:
            error = exc.reason
        except Exception as exc:
            logger.exception("[lane %s] executor raised unexpectedly", lane)
            error = f"{exc.__class__.__name__}: {exc}"
        else:
            self._emit("transfer.ok", lane=lane, recipient=request.recipient_address, tx=tx_id)
            return TransferOutcome(
                recipient_address=request.recipient_address,
                lane=lane,
                success=True,
                transaction_id=str(tx_id),
                request_id=request.id,
            )
        logger.warning("[lane %s] payout to %s failed: %s", lane, request.recipient_address, error)
        self._emit("transfer.failed", lane=lane, recipient=request.recipient_address, error=error)
        return TransferOutcome(
            recipient_address=request.recipient_address,
            lane=lane,
            success=False,
            error=error,
            request_id=request.id,
        )

    def _settle_ledger(self, drained: list[PayoutRequest], result: BatchResult) -> None:
        """Credit one claim per success; failed transfers go to the dead-letter list."""
        by_id = {req.id: req for req in drained}
        failed = [(by_id[o.request_id], o.lane, o.error) for o in result.results if not o.success]
        uncredited: list[TransferOutcome] = []
        for outcome in result.results:
            if not outcome.success:
                continue
            if result.error:
                uncredited.append(outcome)
                continue
            try:
                self.ledger.increment(outcome.recipient_address)
            except PersistenceError as exc:
                result.status = "error"
                result.error = f"claim ledger update failed: {exc}"
                uncredited.append(outcome)

        if uncredited:
            # paid but not counted; never dead-letter these or they would be paid twice
            for outcome in uncredited:
                logger.error(
                    "claim not credited for %s lane=%s tx=%s",
                    outcome.recipient_address, outcome.lane, outcome.transaction_id,
                )
                self._emit(
                    "claim.uncredited",
                    recipient=outcome.recipient_address,
                    lane=outcome.lane,
                    tx=outcome.transaction_id,
                )

        for request, lane, error in failed:
            self._dead_letter([(request, lane)], reason=error)

    def _dead_letter(self, items: list[tuple[PayoutRequest, int]], *, reason: str) -> None:
        if not items:
            return
        if self.dead_letters is None:
            for request, lane in items:
                logger.error("unsettled payout %s for %s (lane %s): %s", request.id, request.recipient_address, lane, reason)
            return
        try:
            self.dead_letters.extend([
                DeadLetter(request=request, reason=reason, lane=lane, failed_at=time.time())
                for request, lane in items
            ])
        except PersistenceError as exc:
            for request, lane in items:
                logger.error(
                    "dead-letter write failed (%s); unsettled payout %s for %s amount=%s lane=%s: %s",
                    exc, request.id, request.recipient_address, request.amount, lane, reason,
                )
