"""
Payment reconciler
Owns every payment status transition and fires content generation once per payment
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

import structlog

from arcadia.config import ArcadiaConfig
from arcadia.database.client import PaymentStore
from arcadia.errors import (
    AmountMismatchError,
    DownstreamTriggerFailure,
    ExpiredRequestError,
    IllegalTransitionError,
    PaymentMismatchError,
    PaymentNotFoundError,
    RefundsDisabledError,
    TransactionRevertedError,
    ValidationError,
    VerificationNotFoundError,
)
from arcadia.models import (
    ALLOWED_TRANSITIONS,
    GenerationStatus,
    OPEN_STATUSES,
    PaymentRecord,
    PaymentStatus,
    utcnow,
)
from arcadia.payments.generation import GenerationTrigger
from arcadia.payments.verifier import TransactionVerifier
from arcadia.payments.webhooks import check_freshness, parse_payload, verify_signature

logger = structlog.get_logger()

EXPIRED_REASON = "Payment request expired"
MAX_REASON_LENGTH = 200

# Verification outcomes that permanently fail a payment
_UNRECOVERABLE = (PaymentMismatchError, AmountMismatchError, TransactionRevertedError)

# Completion webhooks that fail these checks leave the record as confirm() set it
_WEBHOOK_NOT_APPLIED = (VerificationNotFoundError, ExpiredRequestError) + _UNRECOVERABLE


def _short(reason: str) -> str:
    return reason if len(reason) <= MAX_REASON_LENGTH else reason[: MAX_REASON_LENGTH - 3] + "..."


class PaymentReconciler:
    """
    Payment state machine.

    Every status write goes through the store's compare-and-set, so two
    concurrent confirmations of the same payment resolve to exactly one
    COMPLETED transition and exactly one generation trigger.
    """

    def __init__(
        self,
        store: PaymentStore,
        verifier: TransactionVerifier,
        generation: GenerationTrigger,
        config: ArcadiaConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.verifier = verifier
        self.generation = generation
        self.config = config
        self.clock = clock

    async def _get(self, payment_id: str) -> PaymentRecord:
        record = await self.store.get(payment_id)
        if record is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)
        return record

    async def _transition(self, payment_id: str, target: PaymentStatus, **fields) -> PaymentRecord:
        updated = await self.store.transition(payment_id, ALLOWED_TRANSITIONS[target], target, **fields)
        if updated is None:
            current = await self._get(payment_id)
            logger.warning(
                "illegal_transition",
                payment_id=payment_id,
                current=current.status.value,
                target=target.value,
            )
            raise IllegalTransitionError(current.status.value, target.value, payment_id=payment_id)

        logger.info("payment_status_changed", payment_id=payment_id, status=target.value)
        return updated

    # ===== STATUS TRANSITIONS =====

    async def mark_processing(self, payment_id: str, transaction_hash: Optional[str] = None) -> PaymentRecord:
        """Record a submitted transaction; PENDING -> PROCESSING"""
        record = await self._get(payment_id)

        if record.status == PaymentStatus.PROCESSING:
            if transaction_hash and transaction_hash != record.transaction_hash:
                updated = await self.store.update_fields(
                    payment_id, [PaymentStatus.PROCESSING], transaction_hash=transaction_hash
                )
                return updated or await self._get(payment_id)
            return record

        fields = {"transaction_hash": transaction_hash} if transaction_hash else {}
        return await self._transition(payment_id, PaymentStatus.PROCESSING, **fields)

    async def confirm(self, payment_id: str, transaction_hash: Optional[str] = None) -> PaymentRecord:
        """
        Verify a payment transaction and complete the request.

        Args:
            payment_id: Payment request id
            transaction_hash: Claimed transaction; defaults to the one already recorded

        Returns:
            The COMPLETED record (with generation metadata)

        Raises:
            ExpiredRequestError: request expired before confirmation (record is or becomes EXPIRED)
            VerificationNotFoundError: not mined yet (record moves to PROCESSING)
            PaymentMismatchError, AmountMismatchError, TransactionRevertedError:
                record moves to FAILED
            IllegalTransitionError: record is FAILED or REFUNDED
        """
        now = self.clock()
        record = await self._get(payment_id)

        if record.status == PaymentStatus.COMPLETED:
            logger.info("payment_already_completed", payment_id=payment_id)
            return record

        if record.status == PaymentStatus.EXPIRED:
            raise ExpiredRequestError(payment_id=payment_id)

        if record.status not in OPEN_STATUSES:
            raise IllegalTransitionError(record.status.value, PaymentStatus.COMPLETED.value, payment_id=payment_id)

        if record.is_expired(now):
            await self.store.transition(
                payment_id, OPEN_STATUSES, PaymentStatus.EXPIRED, failure_reason=EXPIRED_REASON
            )
            logger.info("payment_expired_on_confirm", payment_id=payment_id)
            raise ExpiredRequestError(payment_id=payment_id)

        tx_hash = transaction_hash or record.transaction_hash
        if not tx_hash:
            raise ValidationError("transactionHash is required", payment_id=payment_id)

        try:
            verdict = await self.verifier.verify(record, tx_hash)
        except VerificationNotFoundError:
            await self._note_pending_transaction(record, tx_hash)
            logger.info("payment_transaction_not_found", payment_id=payment_id, tx_hash=tx_hash)
            raise
        except _UNRECOVERABLE as e:
            await self.store.transition(
                payment_id,
                OPEN_STATUSES,
                PaymentStatus.FAILED,
                failure_reason=_short(str(e)),
                transaction_hash=tx_hash,
            )
            logger.warning("payment_verification_failed", payment_id=payment_id, tx_hash=tx_hash, error=str(e))
            raise

        completed = await self.store.transition(
            payment_id,
            OPEN_STATUSES,
            PaymentStatus.COMPLETED,
            completed_at=now,
            transaction_hash=verdict.transaction_hash,
            block_number=verdict.block_number,
            gas_used=verdict.gas_used,
            payer=verdict.payer,
            failure_reason=None,
        )

        if completed is None:
            current = await self._get(payment_id)
            if current.status == PaymentStatus.COMPLETED:
                # Concurrent confirmation won the race and owns the trigger
                logger.info("payment_confirm_lost_race", payment_id=payment_id)
                return current
            raise IllegalTransitionError(current.status.value, PaymentStatus.COMPLETED.value, payment_id=payment_id)

        logger.info(
            "payment_completed",
            payment_id=payment_id,
            tx_hash=verdict.transaction_hash,
            block_number=verdict.block_number,
            amount=verdict.amount,
        )
        return await self._run_generation(completed, [GenerationStatus.NOT_REQUESTED])

    async def _note_pending_transaction(self, record: PaymentRecord, tx_hash: str) -> None:
        if record.status == PaymentStatus.PENDING:
            await self.store.transition(
                record.payment_id, [PaymentStatus.PENDING], PaymentStatus.PROCESSING, transaction_hash=tx_hash
            )
        elif record.transaction_hash != tx_hash:
            await self.store.update_fields(
                record.payment_id, [PaymentStatus.PROCESSING], transaction_hash=tx_hash
            )

    async def fail(self, payment_id: str, reason: str) -> PaymentRecord:
        """Mark an open request FAILED with a short reason"""
        return await self._transition(payment_id, PaymentStatus.FAILED, failure_reason=_short(reason))

    async def expire(self, payment_id: str) -> PaymentRecord:
        return await self._transition(payment_id, PaymentStatus.EXPIRED, failure_reason=EXPIRED_REASON)

    async def expire_overdue(self, limit: int = 100) -> int:
        """Move every open request past its expiry to EXPIRED; returns the count"""
        now = self.clock()
        expired = 0
        for record in await self.store.list_overdue(now, limit=limit):
            updated = await self.store.transition(
                record.payment_id, OPEN_STATUSES, PaymentStatus.EXPIRED, failure_reason=EXPIRED_REASON
            )
            if updated is not None:
                expired += 1
                logger.info("payment_expired", payment_id=record.payment_id)
        return expired

    async def refund(self, payment_id: str, transaction_hash: Optional[str] = None) -> PaymentRecord:
        """
        Record an on-chain refund; COMPLETED -> REFUNDED.

        The payer calls requestRefund on the escrow contract directly; this
        only reflects a refund the contract has already executed. The refund
        window is the contract's own, measured from the escrow entry, so it
        is not checked again here.
        """
        if not self.config.refunds_enabled:
            raise RefundsDisabledError(payment_id=payment_id)

        record = await self._get(payment_id)
        if record.status != PaymentStatus.COMPLETED:
            raise IllegalTransitionError(record.status.value, PaymentStatus.REFUNDED.value, payment_id=payment_id)

        await self.verifier.verify_refund(record, transaction_hash)
        return await self._transition(
            payment_id, PaymentStatus.REFUNDED, refund_transaction_hash=transaction_hash
        )

    # ===== GENERATION =====

    async def _run_generation(
        self,
        record: PaymentRecord,
        expected: Iterable[GenerationStatus],
    ) -> PaymentRecord:
        payment_id = record.payment_id
        claimed = await self.store.update_generation(
            payment_id,
            expected,
            GenerationStatus.IN_FLIGHT,
            expected_attempts=record.generation_attempts,
            generation_attempts=record.generation_attempts + 1,
            generation_requested_at=self.clock(),
        )
        if claimed is None:
            return await self._get(payment_id)

        # Outcome writes are tied to this claim's attempt number; a claim that
        # was reclaimed as stale no longer owns the record.
        attempt = claimed.generation_attempts
        try:
            result = await self.generation.trigger(claimed)
        except Exception as e:
            error = str(e) if isinstance(e, DownstreamTriggerFailure) else f"{type(e).__name__}: {e}"
            logger.error(
                "generation_trigger_failed",
                payment_id=payment_id,
                attempts=attempt,
                error=error,
            )
            updated = await self.store.update_generation(
                payment_id,
                [GenerationStatus.IN_FLIGHT],
                GenerationStatus.FAILED,
                expected_attempts=attempt,
                generation_error=_short(error),
            )
            return updated or await self._get(payment_id)

        updated = await self.store.update_generation(
            payment_id,
            [GenerationStatus.IN_FLIGHT],
            GenerationStatus.SUCCEEDED,
            expected_attempts=attempt,
            generation_id=result.prompt_id,
            generation_error=None,
        )
        return updated or await self._get(payment_id)

    async def retry_failed_generations(self, limit: int = 50) -> int:
        """
        Re-trigger generation for completed payments whose trigger failed,
        and for in-flight claims older than generation_stale_seconds (the
        worker that took them crashed or was cancelled).
        """
        stale_before = self.clock() - timedelta(seconds=self.config.generation_stale_seconds)
        succeeded = 0
        for record in await self.store.list_generation_retries(stale_before=stale_before, limit=limit):
            if record.generation_status == GenerationStatus.IN_FLIGHT:
                logger.warning(
                    "generation_claim_stale",
                    payment_id=record.payment_id,
                    requested_at=record.generation_requested_at,
                )
            updated = await self._run_generation(record, [record.generation_status])
            if updated.generation_status == GenerationStatus.SUCCEEDED:
                succeeded += 1
        return succeeded

    # ===== WEBHOOKS =====

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> PaymentRecord:
        """
        Authenticate and apply a provider status webhook.

        A COMPLETED notification is only honoured through confirm(), so the
        transaction must pass verification like any other confirmation.
        Verification failures are reflected in the returned record's status.

        Raises:
            SignatureInvalidError: bad, missing or stale signature
            ValidationError: malformed payload or foreign merchant
            PaymentNotFoundError: unknown payment id
            IllegalTransitionError: status change not allowed
        """
        verify_signature(self.config.x402_webhook_secret, raw_body, signature)
        payload = parse_payload(raw_body)
        check_freshness(payload, self.config.webhook_tolerance_seconds, now=self.clock())

        if self.config.merchant_id and payload.merchant_id != self.config.merchant_id:
            raise ValidationError("Unknown merchant", payment_id=payload.payment_id)

        payment_id = payload.payment_id
        logger.info(
            "webhook_received",
            payment_id=payment_id,
            status=payload.status.value,
            tx_hash=payload.transaction_hash,
        )

        record = await self._get(payment_id)
        target = payload.status

        if target == PaymentStatus.COMPLETED:
            if not payload.transaction_hash:
                raise ValidationError("transactionHash is required for COMPLETED", payment_id=payment_id)
            try:
                return await self.confirm(payment_id, payload.transaction_hash)
            except _WEBHOOK_NOT_APPLIED as e:
                logger.info("webhook_completion_not_applied", payment_id=payment_id, reason=e.code)
                return await self._get(payment_id)

        if record.status == target and target != PaymentStatus.PROCESSING:
            return record

        if target == PaymentStatus.PROCESSING:
            return await self.mark_processing(payment_id, payload.transaction_hash)
        if target == PaymentStatus.FAILED:
            return await self.fail(payment_id, payload.reason or "Reported failed by payment provider")
        if target == PaymentStatus.EXPIRED:
            return await self.expire(payment_id)
        if target == PaymentStatus.REFUNDED:
            return await self.refund(payment_id, payload.transaction_hash)

        raise IllegalTransitionError(record.status.value, target.value, payment_id=payment_id)

