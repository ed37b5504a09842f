"""
Payment request generator
Quotes a tier price and persists a PENDING payment request
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field
import structlog

from arcadia.chain.client import ChainClient
from arcadia.config import ArcadiaConfig
from arcadia.database.client import PaymentStore
from arcadia.errors import ValidationError
from arcadia.models import PaymentRecord, Tier, utcnow

logger = structlog.get_logger()


class PaymentRequestCreate(BaseModel):
    """Input for a new payment request (tier is validated by the generator)"""
    tier: Union[str, int]
    brand_id: Optional[str] = None
    brief_id: Optional[str] = None
    memo: Optional[str] = None
    callback_url: Optional[str] = None
    quick: bool = Field(default=False, description="Use the short checkout expiry")


def payment_instructions(record: PaymentRecord) -> Dict[str, object]:
    """Wallet instructions shown next to the 402 response"""
    return {
        "title": "Complete Payment to Generate Veo Prompt",
        "description": f"Pay {record.amount} wei ({record.currency}) on {record.network}",
        "steps": [
            "Connect your wallet",
            f"Switch to the {record.network} network",
            f"Send exactly {record.amount} wei to {record.recipient}",
            "Include the payment id in the transaction data",
            "Wait for transaction confirmation",
            "Your Veo prompt will be generated automatically",
        ],
    }


class PaymentRequestGenerator:
    """
    Creates payment requests.

    The amount is quoted from the escrow contract at creation time so the
    record matches what processPayment will enforce. No chain writes happen
    here.
    """

    def __init__(
        self,
        store: PaymentStore,
        chain: ChainClient,
        config: ArcadiaConfig,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.chain = chain
        self.config = config
        self.clock = clock
        self.id_factory = id_factory

    def _validate(self, request: PaymentRequestCreate) -> Tier:
        errors: List[str] = []
        tier = None

        if not request.brand_id or not request.brand_id.strip():
            errors.append("brand_id is required")

        try:
            tier = Tier.parse(request.tier)
        except ValueError:
            errors.append(f"Unknown tier: {request.tier}")

        if errors:
            raise ValidationError("; ".join(errors), errors=errors)
        return tier

    async def quote(self, tier: Tier) -> int:
        """Current tier price in wei"""
        price = await self.chain.get_tier_price(tier)
        if price <= 0:
            price = self.config.default_tier_prices()[tier.value]
            logger.warning("tier_price_fallback", tier=tier.value, price=price)
        return price

    async def create(self, request: PaymentRequestCreate) -> PaymentRecord:
        """
        Create and persist a PENDING payment request.

        Args:
            request: Tier, brand and optional brief/memo/callback

        Returns:
            The stored PaymentRecord

        Raises:
            ValidationError: unknown tier or missing brand_id (nothing persisted)
            DuplicatePaymentIdError: generated id already exists in the store
        """
        tier = self._validate(request)
        amount = await self.quote(tier)

        payment_id = self.id_factory()
        now = self.clock()
        expiry = (
            self.config.quick_payment_expiry_seconds
            if request.quick
            else self.config.payment_expiry_seconds
        )

        record = PaymentRecord(
            payment_id=payment_id,
            tier=tier,
            amount=amount,
            currency=self.config.payment_currency,
            network=self.chain.network,
            recipient=self.chain.contract_address,
            brand_id=request.brand_id.strip(),
            brief_id=request.brief_id,
            memo=request.memo or f"Veo prompt generation - {tier.value.lower()}_prompt",
            callback_url=request.callback_url,
            payment_url=f"{self.config.payment_base_url.rstrip('/')}/{payment_id}",
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=expiry),
        )

        stored = await self.store.create(record)

        logger.info(
            "payment_request_created",
            payment_id=payment_id,
            tier=tier.value,
            amount=amount,
            brand_id=record.brand_id,
            expires_at=record.expires_at.isoformat(),
        )
        return stored

    @staticmethod
    def qr_code_url(record: PaymentRecord) -> str:
        return f"{record.payment_url}?format=qr"
