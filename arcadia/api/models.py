"""
HTTP models for the Arcadia payments API
x402-style payment requirement plus request/response bodies
"""

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PaymentAccepts(BaseModel):
    """Single payment option in x402 format"""
    network: str = Field(default="scroll-sepolia", description="Blockchain network")
    scheme: str = Field(default="exact", description="Payment scheme")
    recipient: str = Field(description="Escrow contract address")
    amount: str = Field(description="Amount in wei")
    token: str = Field(default="ETH", description="Token symbol")


class PaymentRequired(BaseModel):
    """x402 Payment Required descriptor, sent base64-encoded in the X-Payment-Required header"""
    x402Version: str = "1"
    accepts: List[PaymentAccepts]
    description: str
    error: Optional[str] = None
    payment_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class CreatePaymentRequest(BaseModel):
    """Body of POST /api/payments/request"""
    model_config = ConfigDict(populate_by_name=True)

    tier: Union[str, int] = Field(alias="promptType", description="Tier name, index or *_prompt id")
    brand_id: Optional[str] = Field(default=None, alias="brandId")
    brief_id: Optional[str] = Field(default=None, alias="briefId")
    memo: Optional[str] = None
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")
    quick: bool = False


class PaymentInstructions(BaseModel):
    title: str
    description: str
    steps: List[str]


class PaymentRequestResponse(BaseModel):
    """402 body returned for a new payment request"""
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId")
    payment_url: str = Field(alias="paymentUrl")
    amount: str
    currency: str
    network: str
    tier: str
    recipient: str
    status: str
    expires_at: datetime = Field(alias="expiresAt")
    qr_code: str = Field(alias="qrCode")
    instructions: PaymentInstructions


class VerifyPaymentRequest(BaseModel):
    """Body of POST /api/payments/verify"""
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId", min_length=1)
    transaction_hash: str = Field(alias="transactionHash", min_length=1)


class VerifyPaymentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verified: bool
    payment_id: str = Field(alias="paymentId")
    status: str
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    gas_used: Optional[int] = Field(default=None, alias="gasUsed")
    reason: Optional[str] = None
    retryable: bool = False


class RefundRequest(BaseModel):
    """Body of POST /api/payments/{payment_id}/refund"""
    model_config = ConfigDict(populate_by_name=True)

    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    payment_id: str = Field(alias="paymentId")
    status: str
    timestamp: datetime


class X402Manifest(BaseModel):
    """x402 protocol manifest"""
    version: str = "1.0"
    name: str = "Arcadia"
    description: str = "Tiered on-chain payments for AI video-prompt briefs"
    payment_methods: list[str] = ["x402-eth-escrow"]
    supported_networks: list[str] = ["scroll-sepolia", "scroll"]
    escrow_contract: Optional[str] = None
    tiers: Dict[str, str] = Field(default_factory=dict, description="Tier price in wei")
    endpoints: Dict[str, str]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "version": "1.0",
                "name": "Arcadia",
                "payment_methods": ["x402-eth-escrow"],
                "supported_networks": ["scroll-sepolia"],
                "endpoints": {"request_payment": "/api/payments/request"},
            }
        }
    )

