"""
x402 webhook authentication and payload parsing
"""

import hashlib
import hmac
import json
from datetime import datetime, timedelta
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
import structlog

from arcadia.errors import SignatureInvalidError, ValidationError
from arcadia.models import PaymentStatus, utcnow

logger = structlog.get_logger()

SIGNATURE_HEADER = "x-x402-signature"


class WebhookPayload(BaseModel):
    """Status notification pushed by the payment provider"""
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId", min_length=1)
    status: PaymentStatus
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    gas_used: Optional[int] = Field(default=None, alias="gasUsed")
    amount: Optional[str] = None
    currency: Optional[str] = None
    network: Optional[str] = None
    timestamp: Optional[datetime] = None
    merchant_id: Optional[str] = Field(default=None, alias="merchantId")
    reason: Optional[str] = None


def compute_signature(secret: str, body: Union[bytes, str]) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> None:
    """
    Check a webhook signature in constant time.

    Raises:
        SignatureInvalidError: secret not configured, signature missing or wrong
    """
    if not secret:
        logger.warning("webhook_signature_invalid", reason="secret_not_configured")
        raise SignatureInvalidError("Webhook secret is not configured")

    if not signature:
        logger.warning("webhook_signature_invalid", reason="missing_signature")
        raise SignatureInvalidError("Missing webhook signature")

    computed = compute_signature(secret, body)
    if not hmac.compare_digest(signature.strip().lower(), computed):
        logger.warning("webhook_signature_invalid", reason="mismatch")
        raise SignatureInvalidError("Invalid webhook signature")


def parse_payload(body: bytes) -> WebhookPayload:
    """Decode a webhook body; malformed JSON or fields raise ValidationError"""
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise ValidationError("Invalid webhook payload") from e

    if not isinstance(data, dict):
        raise ValidationError("Invalid webhook payload")

    try:
        return WebhookPayload.model_validate(data)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Invalid webhook payload", errors=errors) from e


def check_freshness(
    payload: WebhookPayload,
    tolerance_seconds: int,
    now: Optional[datetime] = None,
) -> None:
    """Reject webhooks whose timestamp is older than the tolerance (replays)"""
    if payload.timestamp is None or tolerance_seconds <= 0:
        return

    now = now or utcnow()
    sent_at = payload.timestamp
    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=now.tzinfo)

    if now - sent_at > timedelta(seconds=tolerance_seconds):
        logger.warning(
            "webhook_signature_invalid",
            reason="stale_timestamp",
            payment_id=payload.payment_id,
            sent_at=sent_at.isoformat(),
        )
        raise SignatureInvalidError("Webhook timestamp outside tolerance", payment_id=payload.payment_id)
