"""
Tests for on-chain transaction verification
"""

import pytest

from arcadia.errors import (
    AmountMismatchError,
    EscrowPaymentNotFound,
    PaymentMismatchError,
    TransactionRevertedError,
    VerificationNotFoundError,
)
from arcadia.escrow.abi import encode_process_payment, encode_request_refund
from arcadia.escrow.contract import CallContext
from arcadia.models import Tier
from tests.factories import PaymentRecordFactory, PremiumPaymentRecordFactory
from tests.helpers import BASIC_PRICE, CONTRACT, TREASURY, pay


class TestVerifyPayment:
    """Test TransactionVerifier.verify"""

    @pytest.mark.asyncio
    async def test_valid_contract_payment(self, verifier, chain, payer):
        """Test a correct processPayment transaction verifies"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record)

        verdict = await verifier.verify(record, tx_hash)

        assert verdict.valid is True
        assert verdict.transaction_hash == tx_hash
        assert verdict.block_number == 1
        assert verdict.gas_used > 0
        assert verdict.amount == BASIC_PRICE
        assert verdict.payer == payer
        assert verdict.recipient == CONTRACT

    @pytest.mark.asyncio
    async def test_valid_memo_payment(self, verifier, chain, payer):
        """Test a plain transfer carrying the JSON memo verifies"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record, memo=True)

        verdict = await verifier.verify(record, tx_hash)

        assert verdict.valid is True
        assert verdict.payer == payer

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, verifier):
        """Test unknown hashes are retryable not-found"""
        record = PaymentRecordFactory()

        with pytest.raises(VerificationNotFoundError) as exc_info:
            await verifier.verify(record, "0x" + "12" * 32)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unmined_transaction(self, verifier, chain, payer):
        """Test pending transactions are not-found until mined"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record, mine=False)

        with pytest.raises(VerificationNotFoundError):
            await verifier.verify(record, tx_hash)

        chain.mine_pending()
        assert (await verifier.verify(record, tx_hash)).valid is True

    @pytest.mark.asyncio
    async def test_reverted_transaction(self, verifier, chain, payer):
        """Test a reverted receipt is reported as such"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record, value=BASIC_PRICE * 2)

        with pytest.raises(TransactionRevertedError):
            await verifier.verify(record, tx_hash)

    @pytest.mark.asyncio
    async def test_transaction_for_other_payment(self, verifier, chain, payer):
        """Test a transaction paying another id does not verify"""
        record = PaymentRecordFactory()
        other = PaymentRecordFactory()
        tx_hash = pay(chain, payer, other)

        with pytest.raises(PaymentMismatchError):
            await verifier.verify(record, tx_hash)

    @pytest.mark.asyncio
    async def test_transaction_without_binding(self, verifier, chain, payer):
        """Test a bare transfer with no payment id does not verify"""
        record = PaymentRecordFactory()
        tx_hash = chain.send_transaction(payer, CONTRACT, value=BASIC_PRICE)

        with pytest.raises(PaymentMismatchError):
            await verifier.verify(record, tx_hash)

    @pytest.mark.asyncio
    async def test_wrong_recipient(self, verifier, chain, payer):
        """Test memo payments to another address do not verify"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record.model_copy(update={"recipient": TREASURY}), memo=True)

        with pytest.raises(PaymentMismatchError):
            await verifier.verify(record, tx_hash)

    @pytest.mark.asyncio
    async def test_wrong_amount_memo(self, verifier, chain, payer):
        """Test a memo transfer with a different value is an amount mismatch"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record, value=BASIC_PRICE - 1, memo=True)

        with pytest.raises(AmountMismatchError) as exc_info:
            await verifier.verify(record, tx_hash)
        assert exc_info.value.expected == BASIC_PRICE
        assert exc_info.value.actual == BASIC_PRICE - 1

    @pytest.mark.asyncio
    async def test_price_changed_after_quote(self, verifier, chain, payer):
        """Test a contract payment at a new price does not match the quoted amount"""
        record = PaymentRecordFactory()
        chain.contract.update_tier_price(
            CallContext(sender=chain.contract.owner),
            Tier.BASIC,
            BASIC_PRICE + 1,
        )
        tx_hash = pay(chain, payer, record, value=BASIC_PRICE + 1)

        with pytest.raises(AmountMismatchError):
            await verifier.verify(record, tx_hash)

    @pytest.mark.asyncio
    async def test_wrong_tier(self, verifier, chain, payer):
        """Test paying the right amount under another tier does not verify"""
        record = PremiumPaymentRecordFactory()
        data = encode_process_payment(record.payment_id, Tier.BASIC)
        chain.contract.update_tier_price(
            CallContext(sender=chain.contract.owner),
            Tier.BASIC,
            record.amount,
        )
        tx_hash = chain.send_transaction(payer, CONTRACT, value=record.amount, data=data)

        with pytest.raises(PaymentMismatchError):
            await verifier.verify(record, tx_hash)

    @pytest.mark.asyncio
    async def test_verification_is_repeatable(self, verifier, chain, payer):
        """Test verifying twice gives the same verdict"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record)

        assert await verifier.verify(record, tx_hash) == await verifier.verify(record, tx_hash)


class TestVerifyRefund:
    """Test TransactionVerifier.verify_refund"""

    @pytest.mark.asyncio
    async def test_refunded_entry(self, verifier, chain, payer):
        """Test a refunded escrow entry verifies with its refund transaction"""
        record = PaymentRecordFactory()
        pay(chain, payer, record)
        chain.send_transaction(TREASURY, CONTRACT, value=BASIC_PRICE)
        refund_tx = chain.send_transaction(payer, CONTRACT, data=encode_request_refund(record.payment_id))

        await verifier.verify_refund(record, refund_tx)
        await verifier.verify_refund(record)

    @pytest.mark.asyncio
    async def test_entry_not_refunded(self, verifier, chain, payer):
        """Test a still-completed entry is rejected"""
        record = PaymentRecordFactory()
        pay(chain, payer, record)

        with pytest.raises(PaymentMismatchError):
            await verifier.verify_refund(record)

    @pytest.mark.asyncio
    async def test_no_escrow_entry(self, verifier):
        """Test refunds need an on-chain entry"""
        with pytest.raises(EscrowPaymentNotFound):
            await verifier.verify_refund(PaymentRecordFactory())

    @pytest.mark.asyncio
    async def test_reverted_refund_transaction(self, verifier, chain, payer):
        """Test a refund that reverted for lack of funds is rejected"""
        record = PaymentRecordFactory()
        pay(chain, payer, record)
        refund_tx = chain.send_transaction(payer, CONTRACT, data=encode_request_refund(record.payment_id))

        with pytest.raises(TransactionRevertedError):
            await verifier.verify_refund(record, refund_tx)

    @pytest.mark.asyncio
    async def test_refund_transaction_for_other_payment(self, verifier, chain, payer):
        """Test the refund transaction must name this payment"""
        record = PaymentRecordFactory()
        tx_hash = pay(chain, payer, record)

        with pytest.raises(PaymentMismatchError):
            await verifier.verify_refund(record, tx_hash)
