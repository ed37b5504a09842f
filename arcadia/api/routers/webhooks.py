from fastapi import APIRouter, Depends, Request

from arcadia.api.dependencies import get_services, limiter
from arcadia.api.models import WebhookResponse
from arcadia.api.services import ArcadiaServices
from arcadia.models import utcnow
from arcadia.payments.webhooks import SIGNATURE_HEADER

router = APIRouter(prefix="/api/payments/webhook", tags=["Webhooks"])


@router.post("", response_model=WebhookResponse)
@limiter.limit("120/minute")
async def payment_webhook(
    request: Request,
    services: ArcadiaServices = Depends(get_services),
):
    """
    x402 payment status webhook
    The raw body is authenticated with HMAC-SHA256 before it is parsed
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    record = await services.reconciler.handle_webhook(raw_body, signature)

    return WebhookResponse(
        success=True,
        payment_id=record.payment_id,
        status=record.status.value,
        timestamp=utcnow(),
    )


@router.get("")
async def webhook_health():
    """Health check for the webhook receiver"""
    return {
        "status": "healthy",
        "service": "x402-webhook",
        "timestamp": utcnow().isoformat(),
    }
