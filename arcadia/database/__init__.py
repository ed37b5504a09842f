"""
Persistence layer for Arcadia payment requests
"""

from arcadia.database.client import (
    InMemoryPaymentStore,
    PaymentStore,
    SupabasePaymentStore,
    get_payment_store,
)

__all__ = ["PaymentStore", "InMemoryPaymentStore", "SupabasePaymentStore", "get_payment_store"]
