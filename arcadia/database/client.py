"""
Payment request persistence for Arcadia
Stores expose atomic compare-and-set status updates keyed by payment_id
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client
import structlog

from arcadia.config import ArcadiaConfig, get_config
from arcadia.errors import DuplicatePaymentIdError
from arcadia.models import (
    GenerationStatus,
    OPEN_STATUSES,
    PaymentRecord,
    PaymentStatus,
    utcnow,
)

logger = structlog.get_logger()

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class PaymentStore(ABC):
    """Persistence collaborator for payment requests"""

    @abstractmethod
    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """Insert a new record; raises DuplicatePaymentIdError on id reuse"""

    @abstractmethod
    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        """Get record by payment id"""

    @abstractmethod
    async def transition(
        self,
        payment_id: str,
        expected: Iterable[PaymentStatus],
        new_status: PaymentStatus,
        **fields: Any,
    ) -> Optional[PaymentRecord]:
        """
        Compare-and-set status update.

        Applies new_status and fields only if the current status is in
        expected. Returns the updated record, or None if the record is
        missing or its status did not match.
        """

    @abstractmethod
    async def update_fields(
        self,
        payment_id: str,
        expected: Iterable[PaymentStatus],
        **fields: Any,
    ) -> Optional[PaymentRecord]:
        """Conditional update of non-status fields (e.g. a transaction hash)"""

    @abstractmethod
    async def update_generation(
        self,
        payment_id: str,
        expected: Iterable[GenerationStatus],
        new_status: GenerationStatus,
        expected_attempts: Optional[int] = None,
        **fields: Any,
    ) -> Optional[PaymentRecord]:
        """
        Compare-and-set on generation_status for COMPLETED records
        When expected_attempts is given the attempt counter must match too
        """

    @abstractmethod
    async def list_overdue(self, now: datetime, limit: int = 100) -> List[PaymentRecord]:
        """Open (PENDING/PROCESSING) records whose expiry has passed"""

    @abstractmethod
    async def list_generation_retries(
        self, stale_before: Optional[datetime] = None, limit: int = 50
    ) -> List[PaymentRecord]:
        """
        COMPLETED records whose generation trigger failed, plus in-flight
        claims taken before stale_before
        """

    @abstractmethod
    async def list_by_brand(self, brand_id: str, limit: int = 20) -> List[PaymentRecord]:
        """Records created by a brand, newest first"""


class InMemoryPaymentStore(PaymentStore):
    """
    Process-local store.

    A single asyncio.Lock serialises every read-modify-write so concurrent
    reconciler calls observe compare-and-set semantics.
    """

    def __init__(self):
        self._records: Dict[str, PaymentRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        async with self._lock:
            if record.payment_id in self._records:
                raise DuplicatePaymentIdError("Payment ID already exists", payment_id=record.payment_id)
            self._records[record.payment_id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        record = self._records.get(payment_id)
        return record.model_copy(deep=True) if record else None

    async def transition(self, payment_id, expected, new_status, **fields):
        expected = set(expected)
        async with self._lock:
            record = self._records.get(payment_id)
            if record is None or record.status not in expected:
                return None
            updated = record.model_copy(update={**fields, "status": new_status, "updated_at": utcnow()}, deep=True)
            self._records[payment_id] = updated
            return updated.model_copy(deep=True)

    async def update_fields(self, payment_id, expected, **fields):
        expected = set(expected)
        async with self._lock:
            record = self._records.get(payment_id)
            if record is None or record.status not in expected:
                return None
            updated = record.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            self._records[payment_id] = updated
            return updated.model_copy(deep=True)

    async def update_generation(self, payment_id, expected, new_status, expected_attempts=None, **fields):
        expected = set(expected)
        async with self._lock:
            record = self._records.get(payment_id)
            if (
                record is None
                or record.status != PaymentStatus.COMPLETED
                or record.generation_status not in expected
                or (expected_attempts is not None and record.generation_attempts != expected_attempts)
            ):
                return None
            updated = record.model_copy(
                update={**fields, "generation_status": new_status, "updated_at": utcnow()},
                deep=True,
            )
            self._records[payment_id] = updated
            return updated.model_copy(deep=True)

    async def list_overdue(self, now, limit=100):
        overdue = [
            r for r in self._records.values()
            if r.status in OPEN_STATUSES and r.is_expired(now)
        ]
        overdue.sort(key=lambda r: r.expires_at)
        return [r.model_copy(deep=True) for r in overdue[:limit]]

    async def list_generation_retries(self, stale_before=None, limit=50):
        failed = [
            r for r in self._records.values()
            if r.status == PaymentStatus.COMPLETED and (
                r.generation_status == GenerationStatus.FAILED
                or (
                    stale_before is not None
                    and r.generation_status == GenerationStatus.IN_FLIGHT
                    and r.generation_requested_at is not None
                    and r.generation_requested_at < stale_before
                )
            )
        ]
        failed.sort(key=lambda r: r.updated_at)
        return [r.model_copy(deep=True) for r in failed[:limit]]

    async def list_by_brand(self, brand_id, limit=20):
        records = [r for r in self._records.values() if r.brand_id == brand_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in records[:limit]]


class SupabasePaymentStore(PaymentStore):
    """
    Supabase-backed store (table: payment_requests)

    Conditional updates filter on the expected status set; an empty result
    means another writer won the race.
    """

    TABLE = "payment_requests"

    def __init__(self, supabase_url: str, supabase_key: str):
        """Initialize Supabase client"""
        self.client: Client = create_client(supabase_url, supabase_key)

    @staticmethod
    def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
        data = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
            elif hasattr(value, "value"):
                data[key] = value.value
            elif key == "amount":
                # wei amounts exceed float precision
                data[key] = str(value)
            else:
                data[key] = value
        return data

    @staticmethod
    def _to_record(rows: List[Dict[str, Any]]) -> Optional[PaymentRecord]:
        return PaymentRecord.model_validate(rows[0]) if rows else None

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        data = record.model_dump(mode="json")
        data["amount"] = str(record.amount)
        try:
            result = self.client.table(self.TABLE).insert(data).execute()
        except APIError as e:
            # payment_id is the primary key; the insert itself is the uniqueness check
            if e.code == UNIQUE_VIOLATION:
                raise DuplicatePaymentIdError("Payment ID already exists", payment_id=record.payment_id) from e
            raise
        return self._to_record(result.data) or record

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        result = self.client.table(self.TABLE).select("*").eq("payment_id", payment_id).execute()
        return self._to_record(result.data)

    async def transition(self, payment_id, expected, new_status, **fields):
        data = self._serialize({**fields, "status": new_status, "updated_at": utcnow()})
        result = (
            self.client.table(self.TABLE)
            .update(data)
            .eq("payment_id", payment_id)
            .in_("status", [s.value for s in expected])
            .execute()
        )
        return self._to_record(result.data)

    async def update_fields(self, payment_id, expected, **fields):
        data = self._serialize({**fields, "updated_at": utcnow()})
        result = (
            self.client.table(self.TABLE)
            .update(data)
            .eq("payment_id", payment_id)
            .in_("status", [s.value for s in expected])
            .execute()
        )
        return self._to_record(result.data)

    async def update_generation(self, payment_id, expected, new_status, expected_attempts=None, **fields):
        data = self._serialize({**fields, "generation_status": new_status, "updated_at": utcnow()})
        query = (
            self.client.table(self.TABLE)
            .update(data)
            .eq("payment_id", payment_id)
            .eq("status", PaymentStatus.COMPLETED.value)
            .in_("generation_status", [s.value for s in expected])
        )
        if expected_attempts is not None:
            query = query.eq("generation_attempts", expected_attempts)
        result = query.execute()
        return self._to_record(result.data)

    async def list_overdue(self, now, limit=100):
        result = (
            self.client.table(self.TABLE)
            .select("*")
            .in_("status", [s.value for s in OPEN_STATUSES])
            .lt("expires_at", now.isoformat())
            .order("expires_at")
            .limit(limit)
            .execute()
        )
        return [PaymentRecord.model_validate(row) for row in result.data]

    async def list_generation_retries(self, stale_before=None, limit=50):
        retry_filter = f"generation_status.eq.{GenerationStatus.FAILED.value}"
        if stale_before is not None:
            retry_filter += (
                f",and(generation_status.eq.{GenerationStatus.IN_FLIGHT.value},"
                f"generation_requested_at.lt.{stale_before.isoformat()})"
            )
        result = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("status", PaymentStatus.COMPLETED.value)
            .or_(retry_filter)
            .order("updated_at")
            .limit(limit)
            .execute()
        )
        return [PaymentRecord.model_validate(row) for row in result.data]

    async def list_by_brand(self, brand_id, limit=20):
        result = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("brand_id", brand_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [PaymentRecord.model_validate(row) for row in result.data]


# Singleton instance
_store: Optional[PaymentStore] = None


def get_payment_store(config: Optional[ArcadiaConfig] = None) -> PaymentStore:
    """
    Get or create the singleton payment store
    Backend is chosen by STORE_BACKEND; Supabase needs SUPABASE_URL and SUPABASE_KEY
    """
    global _store

    if _store is None:
        config = config or get_config()
        if config.store_backend == "supabase":
            if not config.supabase_url or not config.supabase_key:
                raise ValueError(
                    "SUPABASE_URL and SUPABASE_KEY must be set in environment "
                    "when STORE_BACKEND=supabase."
                )
            _store = SupabasePaymentStore(config.supabase_url, config.supabase_key)
        else:
            _store = InMemoryPaymentStore()
        logger.info("payment_store_initialized", backend=config.store_backend)

    return _store
