"""
Arcadia Escrow Module
Tiered payment escrow contract, its native-balance ledger and ABI helpers
"""

from arcadia.escrow.contract import (
    EscrowContract,
    EscrowPayment,
    CallContext,
    ContractEvent,
    DEFAULT_TIER_PRICES,
    DEFAULT_REFUND_WINDOW,
)
from arcadia.escrow.ledger import Ledger
from arcadia.escrow.abi import (
    ESCROW_ABI,
    PaymentBinding,
    encode_process_payment,
    encode_request_refund,
    encode_memo,
    decode_payment_binding,
    decode_refund_call,
)

__all__ = [
    "EscrowContract",
    "EscrowPayment",
    "CallContext",
    "ContractEvent",
    "DEFAULT_TIER_PRICES",
    "DEFAULT_REFUND_WINDOW",
    "Ledger",
    "ESCROW_ABI",
    "PaymentBinding",
    "encode_process_payment",
    "encode_request_refund",
    "encode_memo",
    "decode_payment_binding",
    "decode_refund_call",
]
