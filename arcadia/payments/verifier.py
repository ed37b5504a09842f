"""
Transaction verifier
Checks that an on-chain transaction pays for a specific payment request
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from arcadia.chain.client import ChainClient
from arcadia.errors import (
    AmountMismatchError,
    EscrowPaymentNotFound,
    PaymentMismatchError,
    TransactionRevertedError,
    VerificationNotFoundError,
)
from arcadia.escrow.abi import decode_payment_binding, decode_refund_call
from arcadia.models import PaymentRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class VerificationVerdict:
    """Result of a successful verification"""
    valid: bool
    transaction_hash: str
    block_number: int
    gas_used: int
    amount: int
    recipient: str
    payer: str


class TransactionVerifier:
    """
    Verifies payment transactions against payment records.

    Verification is a pure read of the chain and is safe to repeat. Every
    failure is raised as a typed error so callers can tell a transient
    "not mined yet" from a permanent mismatch.
    """

    def __init__(self, chain: ChainClient):
        self.chain = chain

    async def verify(self, record: PaymentRecord, transaction_hash: str) -> VerificationVerdict:
        """
        Verify a claimed payment transaction.

        Args:
            record: Payment request the transaction claims to pay
            transaction_hash: Hash submitted by the payer or the webhook

        Returns:
            VerificationVerdict with block, gas and payer details

        Raises:
            VerificationNotFoundError: transaction unknown or not yet mined
            TransactionRevertedError: mined with a failed status
            PaymentMismatchError: wrong payment id, destination or tier
            AmountMismatchError: value differs from the quoted amount
        """
        payment_id = record.payment_id
        tx = await self.chain.get_transaction(transaction_hash)
        if tx is None or tx.block_number is None:
            raise VerificationNotFoundError(
                f"Transaction {transaction_hash} not found on-chain",
                payment_id=payment_id,
            )

        receipt = await self.chain.get_receipt(transaction_hash)
        if receipt is None:
            raise VerificationNotFoundError(
                f"Receipt for {transaction_hash} not available",
                payment_id=payment_id,
            )

        if receipt.status != 1:
            raise TransactionRevertedError(
                f"Transaction {transaction_hash} reverted",
                payment_id=payment_id,
            )

        binding = decode_payment_binding(tx.input)
        if binding is None:
            raise PaymentMismatchError("Transaction carries no payment id", payment_id=payment_id)
        if binding.payment_id != payment_id:
            raise PaymentMismatchError(
                f"Transaction pays {binding.payment_id}, not {payment_id}",
                payment_id=payment_id,
            )

        if (tx.to or "").lower() != record.recipient.lower():
            raise PaymentMismatchError(
                f"Transaction sent to {tx.to}, expected {record.recipient}",
                payment_id=payment_id,
            )

        if tx.value != record.amount:
            raise AmountMismatchError(record.amount, tx.value, payment_id=payment_id)

        if binding.kind == "contract":
            if binding.tier != record.tier:
                raise PaymentMismatchError(
                    f"Transaction tier {binding.tier} does not match {record.tier}",
                    payment_id=payment_id,
                )
            await self._check_escrow_entry(record, tx.sender)

        logger.info(
            "transaction_verified",
            payment_id=payment_id,
            tx_hash=transaction_hash,
            block_number=receipt.block_number,
            payer=tx.sender,
        )

        return VerificationVerdict(
            valid=True,
            transaction_hash=tx.hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            amount=tx.value,
            recipient=record.recipient,
            payer=tx.sender,
        )

    async def _check_escrow_entry(self, record: PaymentRecord, payer: str) -> None:
        """Cross-check the contract's own ledger for contract-call payments"""
        if record.recipient != self.chain.contract_address:
            return

        entry = await self.chain.get_payment(record.payment_id)
        if entry is None:
            raise PaymentMismatchError("Escrow has no entry for this payment", payment_id=record.payment_id)
        if entry.payer != payer.lower() or entry.amount != record.amount:
            raise PaymentMismatchError(
                "Escrow entry does not match the transaction",
                payment_id=record.payment_id,
            )

    async def verify_refund(self, record: PaymentRecord, transaction_hash: Optional[str] = None) -> None:
        """
        Confirm the escrow recorded a refund for this payment.

        When a refund transaction hash is given it must be a mined, successful
        requestRefund call for the same payment id.

        Raises:
            EscrowPaymentNotFound: no on-chain entry for the payment id
            PaymentMismatchError: entry still completed or the tx is not a refund for it
            VerificationNotFoundError: refund transaction not yet mined
            TransactionRevertedError: refund transaction reverted
        """
        payment_id = record.payment_id

        if transaction_hash:
            tx = await self.chain.get_transaction(transaction_hash)
            receipt = await self.chain.get_receipt(transaction_hash)
            if tx is None or receipt is None:
                raise VerificationNotFoundError(
                    f"Refund transaction {transaction_hash} not found on-chain",
                    payment_id=payment_id,
                )
            if receipt.status != 1:
                raise TransactionRevertedError(
                    f"Refund transaction {transaction_hash} reverted",
                    payment_id=payment_id,
                )
            if decode_refund_call(tx.input) != payment_id:
                raise PaymentMismatchError("Transaction is not a refund for this payment", payment_id=payment_id)

        entry = await self.chain.get_payment(payment_id)
        if entry is None:
            raise EscrowPaymentNotFound(payment_id=payment_id)
        if entry.completed:
            raise PaymentMismatchError("Escrow entry has not been refunded", payment_id=payment_id)

        logger.info("refund_verified", payment_id=payment_id, tx_hash=transaction_hash)
