"""
Arcadia Core Data Models
Shared models for the payment store, reconciler and API
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional
from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class Tier(str, Enum):
    """Pricing tiers; declaration order matches the contract's uint8 enum"""
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"

    @property
    def index(self) -> int:
        return list(Tier).index(self)

    @classmethod
    def from_index(cls, index: int) -> "Tier":
        members = list(cls)
        if index < 0 or index >= len(members):
            raise ValueError(f"Unknown tier index: {index}")
        return members[index]

    @classmethod
    def parse(cls, value) -> "Tier":
        """Accept tier names, contract indexes and the legacy *_prompt ids"""
        if isinstance(value, Tier):
            return value
        if isinstance(value, int):
            return cls.from_index(value)
        normalised = str(value).strip().upper()
        if normalised.endswith("_PROMPT"):
            normalised = normalised[: -len("_PROMPT")]
        return cls(normalised)


class PaymentStatus(str, Enum):
    """Payment request lifecycle states"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"


class GenerationStatus(str, Enum):
    """Downstream generation trigger state for a completed payment"""
    NOT_REQUESTED = "NOT_REQUESTED"
    IN_FLIGHT = "IN_FLIGHT"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_STATUSES: FrozenSet[PaymentStatus] = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.EXPIRED,
    PaymentStatus.REFUNDED,
})

OPEN_STATUSES: FrozenSet[PaymentStatus] = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
})

# Target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.COMPLETED: OPEN_STATUSES,
    PaymentStatus.FAILED: OPEN_STATUSES,
    PaymentStatus.EXPIRED: OPEN_STATUSES,
    PaymentStatus.REFUNDED: frozenset({PaymentStatus.COMPLETED}),
}


def is_transition_allowed(current: PaymentStatus, target: PaymentStatus) -> bool:
    """True if current -> target is an edge of the payment state machine"""
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


class PaymentRecord(BaseModel):
    """Off-chain payment request as persisted by the store"""
    payment_id: str
    tier: Tier
    amount: int = Field(gt=0, description="Exact amount in wei")
    currency: str = "ETH"
    network: str
    recipient: str
    brand_id: str
    brief_id: Optional[str] = None
    memo: Optional[str] = None
    callback_url: Optional[str] = None
    payment_url: Optional[str] = None

    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    # On-chain references
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    payer: Optional[str] = None
    refund_transaction_hash: Optional[str] = None

    # Downstream generation
    generation_status: GenerationStatus = GenerationStatus.NOT_REQUESTED
    generation_id: Optional[str] = None
    generation_attempts: int = 0
    generation_error: Optional[str] = None
    generation_requested_at: Optional[datetime] = None

    @field_validator("recipient")
    @classmethod
    def validate_recipient(cls, v):
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Invalid Ethereum address format")
        return v.lower()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Strictly past expiry; a request is still valid at exactly expires_at"""
        return (now or utcnow()) > self.expires_at
