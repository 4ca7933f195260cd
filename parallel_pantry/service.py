from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from parallel_pantry.admission import AdmissionGate, AdmissionPolicy, AuditResult, Auditor
from parallel_pantry.config import Settings
from parallel_pantry.data import ClaimLedger, DeadLetter, DeadLetterStore, FileLock, QueueStore
from parallel_pantry.domain import BatchResult, PayoutRequest, PersistenceError, ValidationError
from parallel_pantry.execution import DryRunTransferExecutor, TransferExecutor, VaultTransferExecutor
from parallel_pantry.infra import RuntimeEventLogger
from parallel_pantry.settlement import LaneAllocator, SettlementCoordinator

logger = logging.getLogger(__name__)

ROUND_LOCK_FILENAME = "settlement.lock"


def build_executor(settings: Settings) -> TransferExecutor:
    if settings.dry_run:
        return DryRunTransferExecutor()
    return VaultTransferExecutor(
        rpc_urls=settings.rpc_urls,
        private_key=settings.agent_private_key,
        vault_address=settings.vault_address,
        chain_id=settings.chain_id,
        token_decimals=settings.token_decimals,
        gas_limit=settings.gas_limit,
        priority_fee_gwei=settings.priority_fee_gwei,
        receipt_timeout_sec=settings.receipt_timeout_sec,
        nonce_mode=settings.lane_nonce_mode,
    )


class ReliefService:
    """Entry point the API, CLI and scheduler share: admission, settlement, dead letters."""

    def __init__(
        self,
        *,
        queue: QueueStore,
        ledger: ClaimLedger,
        dead_letters: DeadLetterStore,
        gate: AdmissionGate,
        coordinator: SettlementCoordinator,
        events: RuntimeEventLogger | None = None,
    ):
        self.queue = queue
        self.ledger = ledger
        self.dead_letters = dead_letters
        self.gate = gate
        self.coordinator = coordinator
        self.events = events

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        executor: TransferExecutor | None = None,
    ) -> "ReliefService":
        events = RuntimeEventLogger(settings.data_dir)
        queue = QueueStore(settings.data_dir, events=events)
        ledger = ClaimLedger(settings.data_dir, events=events)
        dead_letters = DeadLetterStore(settings.data_dir, events=events)
        coordinator = SettlementCoordinator(
            queue,
            ledger,
            executor if executor is not None else build_executor(settings),
            LaneAllocator(settings.data_dir, events=events),
            dead_letters=dead_letters,
            stagger_ms=settings.submit_stagger_ms,
            round_lock=FileLock(Path(settings.data_dir) / ROUND_LOCK_FILENAME),
            events=events,
        )
        policy = AdmissionPolicy(
            score_threshold=settings.score_threshold,
            max_claims_per_address=settings.max_claims_per_address,
            payout_amount=settings.payout_amount,
            amount_policy=settings.amount_policy,
        )
        gate = AdmissionGate(
            queue,
            ledger,
            policy,
            in_flight=coordinator.in_flight_recipients,
            events=events,
        )
        return cls(
            queue=queue,
            ledger=ledger,
            dead_letters=dead_letters,
            gate=gate,
            coordinator=coordinator,
            events=events,
        )

    def submit(self, body: dict[str, Any]) -> PayoutRequest:
        return self.gate.submit(body)

    async def submit_audited(
        self,
        auditor: Auditor,
        image: bytes | str,
        *,
        recipient_address: str,
        amount: str | None = None,
    ) -> tuple[AuditResult, PayoutRequest]:
        """Score the evidence with the auditor, then run normal admission on the result.

        Under the tiered amount policy the auditor's payout recommendation is
        used unless the caller passes an explicit amount.
        """
        audit = await auditor.audit(image)
        body: dict[str, Any] = {
            "recipientAddress": recipient_address,
            "score": audit.score,
            "reason": audit.reason,
        }
        if amount is not None:
            body["amount"] = amount
        elif self.gate.policy.amount_policy == "tiered" and audit.payout_amount > 0:
            body["amount"] = str(audit.payout_amount)
        return audit, self.gate.submit(body)

    async def settle(self) -> BatchResult:
        return await self.coordinator.run_round()

    def pending(self) -> list[PayoutRequest]:
        return self.queue.snapshot()

    def claims_for(self, address: str) -> int:
        return self.ledger.count_for(address)

    def resubmit_dead_letters(self) -> tuple[list[PayoutRequest], list[DeadLetter]]:
        """Re-admit every dead letter as a fresh request; the ones still rejected are kept.

        If the queue cannot be written, the letter being admitted and every
        letter not yet tried go back to the dead-letter list before the error
        propagates.
        """
        accepted: list[PayoutRequest] = []
        kept: list[DeadLetter] = []
        letters = self.dead_letters.drain_all()
        for i, letter in enumerate(letters):
            req = letter.request
            body = {
                "recipientAddress": req.recipient_address,
                "score": req.score,
                "reason": req.reason,
                "amount": req.amount,
            }
            try:
                accepted.append(self.gate.submit(body))
            except ValidationError as err:
                kept.append(DeadLetter(
                    request=req,
                    reason=f"{letter.reason}; resubmit rejected: {err.code}",
                    lane=letter.lane,
                    failed_at=letter.failed_at,
                ))
            except PersistenceError:
                kept.extend(letters[i:])
                logger.error(
                    "dead-letter resubmit interrupted: %s requeued, %s restored",
                    len(accepted), len(kept),
                )
                self.dead_letters.extend(kept)
                raise
        self.dead_letters.extend(kept)
        logger.info("dead-letter resubmit: %s requeued, %s kept", len(accepted), len(kept))
        return accepted, kept
