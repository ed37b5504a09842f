import asyncio
from typing import Dict

import structlog

from arcadia.payments.reconciler import PaymentReconciler

logger = structlog.get_logger()


async def run_maintenance_once(reconciler: PaymentReconciler) -> Dict[str, int]:
    """Expire overdue requests and retry failed generation triggers"""
    results = {"expired": 0, "generation_retried": 0}

    # Use try-except separately so one failure doesn't block the other
    try:
        results["expired"] = await reconciler.expire_overdue()
        if results["expired"] > 0:
            logger.info("overdue_payments_expired", count=results["expired"])
    except Exception as e:
        logger.error("expiry_sweep_error", error=str(e))

    try:
        results["generation_retried"] = await reconciler.retry_failed_generations()
        if results["generation_retried"] > 0:
            logger.info("generation_retries_succeeded", count=results["generation_retried"])
    except Exception as e:
        logger.error("generation_retry_error", error=str(e))

    return results


async def run_maintenance_tasks(reconciler: PaymentReconciler, interval: int = 60):
    """Background task that persists expiries and retries generation"""
    while True:
        try:
            await asyncio.sleep(interval)
            await run_maintenance_once(reconciler)

        except asyncio.CancelledError:
            logger.info("maintenance_tasks_stopped")
            raise
        except Exception as e:
            logger.error("maintenance_task_error", error=str(e))
            # Sleep a bit before retrying to avoid spamming logs if the store is down
            await asyncio.sleep(interval)
