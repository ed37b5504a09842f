"""
Arcadia Payments Server
FastAPI surface for payment requests, verification, webhooks and status polling
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog

from arcadia import __version__
from arcadia.api.dependencies import limiter
from arcadia.api.routers import general, payments, webhooks
from arcadia.api.services import ArcadiaServices, build_services
from arcadia.api.tasks import run_maintenance_tasks
from arcadia.config import ArcadiaConfig, get_config
from arcadia.errors import ArcadiaError

# Initialize structured logger
logger = structlog.get_logger()


def configure_logging(config: ArcadiaConfig) -> None:
    """Apply structlog processors; JSON lines in production, console renderer for text"""
    renderer = (
        structlog.processors.JSONRenderer()
        if config.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level)
        ),
    )


async def arcadia_error_handler(request: Request, exc: ArcadiaError) -> JSONResponse:
    """Map the error hierarchy to HTTP responses; internals stay in the logs"""
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        payment_id=exc.payment_id,
        error=str(exc),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(
    config: Optional[ArcadiaConfig] = None,
    services: Optional[ArcadiaServices] = None,
    run_maintenance: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings; defaults to the environment singleton
        services: Pre-built collaborators (tests inject a simulated chain here)
        run_maintenance: Start the expiry/generation-retry loop in the lifespan
    """
    config = config or get_config()
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for the FastAPI app"""
        logger.info(
            "arcadia_starting",
            host=config.arcadia_host,
            port=config.arcadia_port,
            network=config.network,
            chain_mode=config.chain_mode,
        )

        maintenance_task = None
        if run_maintenance:
            maintenance_task = asyncio.create_task(
                run_maintenance_tasks(services.reconciler, interval=config.maintenance_interval_seconds)
            )

        yield

        if maintenance_task:
            maintenance_task.cancel()
            try:
                await maintenance_task
            except asyncio.CancelledError:
                pass
        await services.close()
        logger.info("arcadia_shutting_down")

    app = FastAPI(
        title="Arcadia Payments",
        description="Tiered on-chain payment escrow and reconciliation for AI video-prompt briefs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    limiter.enabled = config.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ArcadiaError, arcadia_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(general.router)
    # Webhook routes must be registered before /api/payments/{payment_id}
    app.include_router(webhooks.router)
    app.include_router(payments.router)

    return app


def main():
    """Run the API with uvicorn"""
    import uvicorn

    config = get_config()
    configure_logging(config)

    uvicorn.run(
        "arcadia.api.server:create_app",
        factory=True,
        host=config.arcadia_host,
        port=config.arcadia_port,
        reload=config.reload,
        log_level=config.log_level.lower()
    )


if __name__ == "__main__":
    main()
