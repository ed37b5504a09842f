import base64
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from arcadia.api.dependencies import get_services, limiter, logger
from arcadia.api.models import (
    CreatePaymentRequest,
    PaymentAccepts,
    PaymentInstructions,
    PaymentRequestResponse,
    PaymentRequired,
    RefundRequest,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from arcadia.api.services import ArcadiaServices
from arcadia.errors import (
    AmountMismatchError,
    ExpiredRequestError,
    PaymentMismatchError,
    TransactionRevertedError,
    ValidationError,
    VerificationNotFoundError,
)
from arcadia.models import PaymentRecord, PaymentStatus
from arcadia.payments.polling import PaymentStatusSnapshot
from arcadia.payments.requests import PaymentRequestCreate, PaymentRequestGenerator, payment_instructions

router = APIRouter(prefix="/api/payments", tags=["Payments"])

PAYMENT_REQUIRED_HEADER = "X-Payment-Required"


def encode_payment_required(record: PaymentRecord) -> str:
    """Encode the x402 PaymentRequired descriptor as base64 for the response header"""
    payment_required = PaymentRequired(
        accepts=[
            PaymentAccepts(
                network=record.network,
                scheme="exact",
                recipient=record.recipient,
                amount=str(record.amount),
                token=record.currency,
            )
        ],
        description=record.memo or f"Arcadia {record.tier.value} prompt",
        payment_id=record.payment_id,
        expires_at=record.expires_at,
    )
    return base64.b64encode(payment_required.model_dump_json().encode()).decode()


def _snapshot_body(snapshot: PaymentStatusSnapshot) -> dict:
    return snapshot.model_dump(by_alias=True, mode="json")


@router.post("/request", status_code=status.HTTP_402_PAYMENT_REQUIRED)
@limiter.limit("30/minute")
async def create_payment_request(
    request: Request,
    body: CreatePaymentRequest,
    services: ArcadiaServices = Depends(get_services),
):
    """
    Create a payment request for a prompt tier
    Responds 402 with payment details and the x402 descriptor header
    """
    record = await services.generator.create(
        PaymentRequestCreate(
            tier=body.tier,
            brand_id=body.brand_id,
            brief_id=body.brief_id,
            memo=body.memo,
            callback_url=body.callback_url,
            quick=body.quick,
        )
    )

    response = PaymentRequestResponse(
        payment_id=record.payment_id,
        payment_url=record.payment_url,
        amount=str(record.amount),
        currency=record.currency,
        network=record.network,
        tier=record.tier.value,
        recipient=record.recipient,
        status=record.status.value,
        expires_at=record.expires_at,
        qr_code=PaymentRequestGenerator.qr_code_url(record),
        instructions=PaymentInstructions(**payment_instructions(record)),
    )

    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content=response.model_dump(by_alias=True, mode="json"),
        headers={PAYMENT_REQUIRED_HEADER: encode_payment_required(record)},
    )


@router.get("/request")
async def get_payment_request_status(
    payment_id: Optional[str] = Query(default=None, alias="paymentId"),
    services: ArcadiaServices = Depends(get_services),
):
    """Payment status by query parameter (legacy checkout form)"""
    if not payment_id:
        raise ValidationError("Payment ID is required")
    snapshot = await services.gateway.get_status(payment_id)
    return _snapshot_body(snapshot)


@router.post("/verify", response_model=VerifyPaymentResponse)
@limiter.limit("60/minute")
async def verify_payment(
    request: Request,
    body: VerifyPaymentRequest,
    services: ArcadiaServices = Depends(get_services),
):
    """
    Verify a submitted transaction and complete the payment
    202 while the transaction is not yet mined, 422 when it does not pay for this request
    """
    try:
        record = await services.reconciler.confirm(body.payment_id, body.transaction_hash)
    except VerificationNotFoundError as e:
        return _verify_failure(body.payment_id, e, status.HTTP_202_ACCEPTED)
    except ExpiredRequestError as e:
        return _verify_failure(body.payment_id, e, status.HTTP_410_GONE, PaymentStatus.EXPIRED)
    except (PaymentMismatchError, AmountMismatchError, TransactionRevertedError) as e:
        return _verify_failure(body.payment_id, e, status.HTTP_422_UNPROCESSABLE_ENTITY, PaymentStatus.FAILED)

    return VerifyPaymentResponse(
        verified=True,
        payment_id=record.payment_id,
        status=record.status.value,
        block_number=record.block_number,
        gas_used=record.gas_used,
    )


def _verify_failure(
    payment_id: str,
    error,
    status_code: int,
    new_status: PaymentStatus = PaymentStatus.PROCESSING,
) -> JSONResponse:
    logger.info("payment_verify_rejected", payment_id=payment_id, code=error.code)
    body = VerifyPaymentResponse(
        verified=False,
        payment_id=payment_id,
        status=new_status.value,
        reason=error.public_message,
        retryable=error.retryable,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, mode="json"))


@router.get("")
async def list_brand_payments(
    brand_id: str = Query(alias="brandId", min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
    services: ArcadiaServices = Depends(get_services),
):
    """Recent payment requests for a brand, newest first"""
    records = await services.store.list_by_brand(brand_id, limit=limit)
    now = services.gateway.clock()
    return [_snapshot_body(PaymentStatusSnapshot.from_record(r, now=now)) for r in records]


@router.get("/{payment_id}")
async def get_payment_status(
    payment_id: str,
    services: ArcadiaServices = Depends(get_services),
):
    """Status snapshot polled by the checkout UI"""
    snapshot = await services.gateway.get_status(payment_id)
    return _snapshot_body(snapshot)


@router.post("/{payment_id}/refund")
@limiter.limit("10/minute")
async def record_refund(
    request: Request,
    payment_id: str,
    body: Optional[RefundRequest] = None,
    services: ArcadiaServices = Depends(get_services),
):
    """
    Record a refund the payer executed on the escrow contract
    The on-chain entry must already be marked refunded
    """
    transaction_hash = body.transaction_hash if body else None
    record = await services.reconciler.refund(payment_id, transaction_hash)
    snapshot = await services.gateway.get_status(record.payment_id)
    return _snapshot_body(snapshot)
