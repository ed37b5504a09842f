"""
Arcadia Payment Module
Payment requests, on-chain verification, reconciliation and status polling
"""

from arcadia.payments.requests import PaymentRequestCreate, PaymentRequestGenerator
from arcadia.payments.verifier import TransactionVerifier, VerificationVerdict
from arcadia.payments.generation import (
    GenerationResult,
    GenerationTrigger,
    HttpGenerationTrigger,
)
from arcadia.payments.reconciler import PaymentReconciler
from arcadia.payments.polling import (
    HttpStatusFetcher,
    PaymentStatusGateway,
    PaymentStatusSnapshot,
    StatusPoller,
)
from arcadia.payments.webhooks import WebhookPayload, compute_signature, verify_signature

__all__ = [
    "PaymentRequestCreate",
    "PaymentRequestGenerator",
    "TransactionVerifier",
    "VerificationVerdict",
    "GenerationResult",
    "GenerationTrigger",
    "HttpGenerationTrigger",
    "PaymentReconciler",
    "HttpStatusFetcher",
    "PaymentStatusGateway",
    "PaymentStatusSnapshot",
    "StatusPoller",
    "WebhookPayload",
    "compute_signature",
    "verify_signature",
]
