from fastapi import APIRouter, Depends

from arcadia import __version__
from arcadia.api.dependencies import get_services
from arcadia.api.models import X402Manifest
from arcadia.api.services import ArcadiaServices
from arcadia.models import Tier, utcnow

router = APIRouter(tags=["General"])


@router.get("/", tags=["Health"])
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Arcadia Payments",
        "version": __version__,
        "status": "operational",
        "x402_manifest": "/x402.json"
    }


@router.get("/x402.json", response_model=X402Manifest, tags=["Payments"])
async def get_x402_manifest(services: ArcadiaServices = Depends(get_services)):
    """
    x402 protocol manifest
    Machine-readable description of the payment endpoints and tier prices
    """
    tiers = {tier.value: str(await services.chain.get_tier_price(tier)) for tier in Tier}
    return X402Manifest(
        supported_networks=[services.config.network],
        escrow_contract=services.chain.contract_address,
        tiers=tiers,
        endpoints={
            "request_payment": "/api/payments/request",
            "payment_status": "/api/payments/{payment_id}",
            "verify": "/api/payments/verify",
            "webhook": "/api/payments/webhook",
            "refund": "/api/payments/{payment_id}/refund",
        }
    )


@router.get("/health", tags=["Health"])
async def health_check(services: ArcadiaServices = Depends(get_services)):
    """Health check endpoint"""
    config = services.config
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "network": config.network,
        "chain_mode": config.chain_mode,
        "store": config.store_backend,
        "refunds_enabled": config.refunds_enabled,
    }
