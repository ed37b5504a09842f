"""
Test helpers: fixed addresses, a controllable clock and wallet/webhook shortcuts
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from arcadia.chain.simulated import SimulatedChain
from arcadia.errors import DownstreamTriggerFailure
from arcadia.escrow.abi import encode_memo, encode_process_payment
from arcadia.models import PaymentRecord, Tier
from arcadia.payments.generation import GenerationResult, GenerationTrigger
from arcadia.payments.webhooks import compute_signature

OWNER = "0x000000000000000000000000000000000000a11c"
TREASURY = "0x000000000000000000000000000000000000beef"
CONTRACT = "0x00000000000000000000000000000000a4c4d1a0"
WEBHOOK_SECRET = "test-webhook-secret"

BASIC_PRICE = 5_000_000_000_000_000
PREMIUM_PRICE = 10_000_000_000_000_000
ENTERPRISE_PRICE = 25_000_000_000_000_000

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Shared wall clock for the contract (unix seconds) and the services (datetime)"""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def timestamp(self) -> int:
        return int(self.current.timestamp())

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class RecordingGenerationTrigger(GenerationTrigger):
    """Generation collaborator that records calls and can be told to fail"""

    def __init__(self, failures: int = 0, delay: float = 0):
        self.calls: List[str] = []
        self.failures = failures
        self.delay = delay

    async def trigger(self, record: PaymentRecord) -> GenerationResult:
        self.calls.append(record.payment_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise DownstreamTriggerFailure("Generation service returned 503", payment_id=record.payment_id)
        return GenerationResult(promptId=f"prompt_{record.payment_id[:8]}", type="veo-prompt")


def pay(
    chain: SimulatedChain,
    sender: str,
    record: PaymentRecord,
    value: Optional[int] = None,
    tier: Optional[Tier] = None,
    memo: bool = False,
    mine: bool = True,
) -> str:
    """Send the wallet transaction for a payment request; returns the tx hash"""
    if memo:
        data = encode_memo(record.payment_id)
    else:
        data = encode_process_payment(record.payment_id, tier or record.tier)
    return chain.send_transaction(
        sender=sender,
        to=record.recipient,
        value=record.amount if value is None else value,
        data=data,
        mine=mine,
    )


def signed_webhook(payload: dict, secret: str = WEBHOOK_SECRET):
    """Serialise a webhook payload and sign it like the payment provider"""
    body = json.dumps(payload).encode("utf-8")
    return body, compute_signature(secret, body)


def webhook_payload(payment_id: str, status: str, clock: FakeClock, **extra) -> dict:
    payload = {
        "paymentId": payment_id,
        "status": status,
        "currency": "ETH",
        "network": "scroll-sepolia",
        "timestamp": clock.now().isoformat(),
    }
    payload.update(extra)
    return payload
