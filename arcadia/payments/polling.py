"""
Payment status polling
Read-only status gateway plus the cooperative client-side poll loop
"""

import asyncio
import time
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_serializer
import structlog

from arcadia.database.client import PaymentStore
from arcadia.errors import ArcadiaError, PaymentNotFoundError, PollingTimeoutError
from arcadia.models import (
    GenerationStatus,
    PaymentRecord,
    PaymentStatus,
    TERMINAL_STATUSES,
    Tier,
    utcnow,
)

logger = structlog.get_logger()

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_POLL_MAX_DURATION = 300.0


class PaymentStatusSnapshot(BaseModel):
    """Point-in-time view of a payment request, as served to clients"""
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId")
    status: PaymentStatus
    tier: Tier
    amount: int
    currency: str
    network: str
    recipient: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    expires_at: datetime = Field(alias="expiresAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    gas_used: Optional[int] = Field(default=None, alias="gasUsed")
    generation_status: GenerationStatus = Field(default=GenerationStatus.NOT_REQUESTED, alias="generationStatus")
    generation_id: Optional[str] = Field(default=None, alias="generationId")
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")

    @field_serializer("amount")
    def serialize_amount(self, amount: int) -> str:
        # wei exceeds JavaScript's safe integer range
        return str(amount)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_record(cls, record: PaymentRecord, now: Optional[datetime] = None) -> "PaymentStatusSnapshot":
        """Project a record; an open request past expiry is reported as EXPIRED"""
        status = record.status
        if not record.is_terminal and record.is_expired(now):
            status = PaymentStatus.EXPIRED

        return cls(
            payment_id=record.payment_id,
            status=status,
            tier=record.tier,
            amount=record.amount,
            currency=record.currency,
            network=record.network,
            recipient=record.recipient,
            created_at=record.created_at,
            updated_at=record.updated_at,
            expires_at=record.expires_at,
            completed_at=record.completed_at,
            transaction_hash=record.transaction_hash,
            block_number=record.block_number,
            gas_used=record.gas_used,
            generation_status=record.generation_status,
            generation_id=record.generation_id,
            failure_reason=record.failure_reason,
        )

    def change_key(self) -> tuple:
        return (self.status, self.transaction_hash, self.block_number, self.generation_status)


class PaymentStatusGateway:
    """Serves status snapshots; never writes to the store"""

    def __init__(self, store: PaymentStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def get_status(self, payment_id: str) -> PaymentStatusSnapshot:
        record = await self.store.get(payment_id)
        if record is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)
        return PaymentStatusSnapshot.from_record(record, now=self.clock())


StatusFetcher = Callable[[str], Awaitable[PaymentStatusSnapshot]]


class HttpStatusFetcher:
    """Fetches snapshots from a running Arcadia API"""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __call__(self, payment_id: str) -> PaymentStatusSnapshot:
        response = await self.client.get(f"{self.base_url}/api/payments/{payment_id}")
        if response.status_code == 404:
            raise PaymentNotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)
        response.raise_for_status()
        return PaymentStatusSnapshot.model_validate(response.json())

    async def close(self) -> None:
        await self.client.aclose()


class StatusPoller:
    """
    Polls a payment until it reaches a terminal status.

    poll() is an async generator yielding snapshots. It stops on a terminal
    status or after stop(), raises PollingTimeoutError once max_duration has
    elapsed, and keeps going through transient fetch errors. Clock and sleep
    are injectable so tests can drive time directly.
    """

    def __init__(
        self,
        fetch: StatusFetcher,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_duration: float = DEFAULT_POLL_MAX_DURATION,
        only_changes: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self.max_duration = max_duration
        self.only_changes = only_changes
        self.clock = clock
        self.sleep = sleep
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def poll(self, payment_id: str) -> AsyncIterator[PaymentStatusSnapshot]:
        self._stopped = False
        started = self.clock()
        last_key = None
        attempts = 0

        while not self._stopped:
            attempts += 1
            try:
                snapshot = await self.fetch(payment_id)
            except PaymentNotFoundError:
                raise
            except (ArcadiaError, httpx.HTTPError) as e:
                logger.warning("status_poll_error", payment_id=payment_id, attempt=attempts, error=str(e))
            else:
                key = snapshot.change_key()
                if not self.only_changes or key != last_key:
                    last_key = key
                    yield snapshot
                if snapshot.is_terminal:
                    logger.info("status_poll_finished", payment_id=payment_id, status=snapshot.status.value)
                    return

            if self._stopped:
                return

            await self.sleep(self.interval)

            if self.clock() - started >= self.max_duration:
                logger.warning("status_poll_timeout", payment_id=payment_id, attempts=attempts)
                raise PollingTimeoutError(payment_id=payment_id)
