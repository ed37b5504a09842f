"""
Arcadia error taxonomy
Off-chain payment errors and escrow contract reverts share one hierarchy
"""

from typing import Optional


class ArcadiaError(Exception):
    """Base error for Arcadia payments"""

    code = "ARCADIA_ERROR"
    http_status = 500
    retryable = False
    public_message = "Payment processing failed"

    def __init__(self, message: Optional[str] = None, *, payment_id: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.payment_id = payment_id

    def to_dict(self) -> dict:
        """Client-facing error body (never carries raw chain errors)"""
        return {
            "error": self.public_message,
            "code": self.code,
            "retryable": self.retryable,
        }


class ValidationError(ArcadiaError):
    """Missing or malformed request fields"""

    code = "VALIDATION_ERROR"
    http_status = 400
    public_message = "Invalid payment request"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or ([message] if message else [])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["details"] = self.errors
        return body


class PaymentNotFoundError(ArcadiaError):
    """No payment request exists for the given id"""

    code = "NOT_FOUND"
    http_status = 404
    public_message = "Payment not found"


class IllegalTransitionError(ArcadiaError):
    """Requested status change is not in the transition graph"""

    code = "ILLEGAL_TRANSITION"
    http_status = 409
    public_message = "Payment is not in a state that allows this operation"

    def __init__(self, current, target, **kwargs):
        super().__init__(f"Illegal transition {current} -> {target}", **kwargs)
        self.current = current
        self.target = target


class ExpiredRequestError(ArcadiaError):
    """Verification or completion attempted after the request expired"""

    code = "EXPIRED"
    http_status = 410
    public_message = "Payment request has expired"


class VerificationNotFoundError(ArcadiaError):
    """Transaction is not yet visible on-chain; safe to retry"""

    code = "NOT_FOUND_ON_CHAIN"
    http_status = 202
    retryable = True
    public_message = "Transaction not yet confirmed, try again shortly"


class PaymentMismatchError(ArcadiaError):
    """Transaction does not pay for the claimed payment"""

    code = "MISMATCH"
    http_status = 422
    public_message = "Transaction does not match this payment"


class TransactionRevertedError(ArcadiaError):
    """Transaction was mined but reverted"""

    code = "REVERTED"
    http_status = 422
    public_message = "Transaction failed on-chain"


class SignatureInvalidError(ArcadiaError):
    """Inbound webhook failed the authenticity check"""

    code = "INVALID_SIGNATURE"
    http_status = 401
    public_message = "Invalid signature"


class DownstreamTriggerFailure(ArcadiaError):
    """Generation trigger failed after the payment completed"""

    code = "GENERATION_FAILED"
    http_status = 502
    retryable = True
    public_message = "Payment completed, content generation will be retried"


class PollingTimeoutError(ArcadiaError):
    """Client-side poll loop exceeded its maximum duration"""

    code = "POLLING_TIMEOUT"
    http_status = 408
    retryable = True
    public_message = "Polling timeout - payment status check stopped"


class RefundsDisabledError(ArcadiaError):
    """Refunds are switched off for this deployment"""

    code = "REFUNDS_DISABLED"
    http_status = 403
    public_message = "Refunds are not available"


# ===== CONTRACT REVERTS =====


class ContractRevert(ArcadiaError):
    """Escrow contract precondition failed; no state was changed"""

    code = "REVERTED"
    http_status = 422
    public_message = "Transaction reverted"


class AmountMismatchError(ContractRevert):
    """Attached or transferred value differs from the required tier price"""

    code = "AMOUNT_MISMATCH"
    retryable = True
    public_message = "Payment amount does not match the tier price"

    def __init__(self, expected: int, actual: int, **kwargs):
        super().__init__(f"Incorrect payment amount: expected {expected}, got {actual}", **kwargs)
        self.expected = expected
        self.actual = actual


class DuplicatePaymentIdError(ContractRevert):
    """Payment id was already used; fatal for that id"""

    code = "DUPLICATE_PAYMENT_ID"
    http_status = 409
    public_message = "Payment id already used"


class InvalidPaymentIdError(ContractRevert):
    code = "INVALID_PAYMENT_ID"
    public_message = "Payment id is required"


class InvalidTierError(ContractRevert):
    code = "INVALID_TIER"
    public_message = "Unknown payment tier"


class ContractPausedError(ContractRevert):
    code = "PAUSED"
    http_status = 503
    retryable = True
    public_message = "Payments are temporarily paused"


class UnauthorizedError(ContractRevert):
    code = "UNAUTHORIZED"
    http_status = 403
    public_message = "Caller is not allowed to perform this operation"


class EscrowPaymentNotFound(ContractRevert):
    code = "ESCROW_PAYMENT_NOT_FOUND"
    http_status = 404
    public_message = "Payment not found on-chain"


class RefundWindowClosedError(ContractRevert):
    code = "REFUND_WINDOW_CLOSED"
    http_status = 409
    public_message = "Refund window has closed"


class AlreadyRefundedError(ContractRevert):
    code = "ALREADY_REFUNDED"
    http_status = 409
    public_message = "Payment already refunded"


class InsufficientContractBalanceError(ContractRevert):
    """Contract cannot fund a refund; the treasury must top it up first"""

    code = "INSUFFICIENT_CONTRACT_BALANCE"
    http_status = 503
    retryable = True
    public_message = "Refund cannot be funded right now"


class TransferFailedError(ContractRevert):
    code = "TRANSFER_FAILED"
    public_message = "Transfer failed"


class InvalidParameterError(ContractRevert):
    code = "INVALID_PARAMETER"
    public_message = "Invalid contract parameter"
