"""
Escrow contract ABI and calldata helpers
Encodes contract calls and recovers the payment-id binding from transaction input
"""

import json
from dataclasses import dataclass
from typing import Optional, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from arcadia.models import Tier

# Escrow contract ABI: tier payments, refunds, admin setters and events
ESCROW_ABI = [
    {
        "inputs": [
            {"name": "paymentId", "type": "string"},
            {"name": "tier", "type": "uint8"},
        ],
        "name": "processPayment",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [{"name": "paymentId", "type": "string"}],
        "name": "requestRefund",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "paymentId", "type": "string"}],
        "name": "getPayment",
        "outputs": [
            {"name": "payer", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "tier", "type": "uint8"},
            {"name": "completed", "type": "bool"},
            {"name": "timestamp", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "tier", "type": "uint8"}],
        "name": "getTierPrice",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "payer", "type": "address"}],
        "name": "getPayerPaymentCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "totalPayments",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "tier", "type": "uint8"},
            {"name": "newPrice", "type": "uint256"},
        ],
        "name": "updateTierPrice",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "newTreasury", "type": "address"}],
        "name": "updateTreasuryWallet",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "newWindow", "type": "uint256"}],
        "name": "updateRefundWindow",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {"inputs": [], "name": "pause", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [], "name": "unpause", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [], "name": "emergencyWithdraw", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "paymentId", "type": "string"},
            {"indexed": True, "name": "payer", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "tier", "type": "uint8"},
        ],
        "name": "PaymentReceived",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "paymentId", "type": "string"},
            {"indexed": True, "name": "payer", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "PaymentRefunded",
        "type": "event",
    },
    {"stateMutability": "payable", "type": "receive"},
]

PROCESS_PAYMENT_SIGNATURE = "processPayment(string,uint8)"
REQUEST_REFUND_SIGNATURE = "requestRefund(string)"

# Service tag carried by the JSON memo the web checkout attaches to plain transfers
MEMO_SERVICE = "veo-prompt-generation"


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature))[:4]


PROCESS_PAYMENT_SELECTOR = function_selector(PROCESS_PAYMENT_SIGNATURE)
REQUEST_REFUND_SELECTOR = function_selector(REQUEST_REFUND_SIGNATURE)


@dataclass(frozen=True)
class PaymentBinding:
    """Payment id (and tier, for contract calls) recovered from calldata"""
    payment_id: str
    tier: Optional[Tier] = None
    kind: str = "contract"  # "contract" or "memo"


def _to_bytes(data: Union[str, bytes, None]) -> bytes:
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    text = data[2:] if data.startswith("0x") else data
    try:
        return bytes.fromhex(text)
    except ValueError:
        return b""


def call_selector(data: Union[str, bytes, None]) -> bytes:
    """First four bytes of transaction input; empty for plain transfers"""
    return _to_bytes(data)[:4]


def encode_process_payment(payment_id: str, tier) -> str:
    """Calldata for processPayment(paymentId, tier) as 0x-prefixed hex"""
    tier_index = Tier.parse(tier).index
    body = encode(["string", "uint8"], [payment_id, tier_index])
    return "0x" + (PROCESS_PAYMENT_SELECTOR + body).hex()


def encode_request_refund(payment_id: str) -> str:
    body = encode(["string"], [payment_id])
    return "0x" + (REQUEST_REFUND_SELECTOR + body).hex()


def encode_memo(payment_id: str, service: str = MEMO_SERVICE) -> str:
    """Hex-encoded JSON memo used by plain value transfers from the web checkout"""
    memo = json.dumps({"paymentId": payment_id, "service": service})
    return "0x" + memo.encode("utf-8").hex()


def decode_refund_call(data: Union[str, bytes, None]) -> Optional[str]:
    raw = _to_bytes(data)
    if raw[:4] != REQUEST_REFUND_SELECTOR:
        return None
    try:
        (payment_id,) = decode(["string"], raw[4:])
    except DecodingError:
        return None
    return payment_id


def decode_payment_binding(data: Union[str, bytes, None]) -> Optional[PaymentBinding]:
    """
    Recover the payment binding from transaction input.

    Understands ABI-encoded processPayment calls and the JSON memo form.
    Returns None when the input carries no recognisable binding.
    """
    raw = _to_bytes(data)
    if not raw:
        return None

    if raw[:4] == PROCESS_PAYMENT_SELECTOR:
        try:
            payment_id, tier_index = decode(["string", "uint8"], raw[4:])
            return PaymentBinding(payment_id=payment_id, tier=Tier.from_index(tier_index), kind="contract")
        except (DecodingError, ValueError):
            return None

    try:
        memo = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(memo, dict) or not isinstance(memo.get("paymentId"), str):
        return None
    return PaymentBinding(payment_id=memo["paymentId"], kind="memo")
