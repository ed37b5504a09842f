"""
Downstream content generation trigger
Fired once per completed payment; the endpoint must be idempotent on payment id
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
import structlog

from arcadia.errors import DownstreamTriggerFailure
from arcadia.models import PaymentRecord

logger = structlog.get_logger()


class GenerationResult(BaseModel):
    """Validated response of the generation service"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    prompt_id: str = Field(alias="promptId", min_length=1)
    type: Optional[str] = None
    timestamp: Optional[datetime] = None
    veo_prompt: Optional[Dict[str, Any]] = Field(default=None, alias="veoPrompt")


class GenerationTrigger(ABC):
    """Starts content generation for a paid request"""

    @abstractmethod
    async def trigger(self, record: PaymentRecord) -> GenerationResult:
        """
        Request generation for a completed payment.

        Raises:
            DownstreamTriggerFailure: service unreachable, rejected the call
                or returned a malformed result
        """

    async def close(self) -> None:
        return None


class HttpGenerationTrigger(GenerationTrigger):
    """Calls the brief generation endpoint over HTTP with a bearer key"""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self, record: PaymentRecord) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": record.payment_id,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def trigger(self, record: PaymentRecord) -> GenerationResult:
        body = {
            "paymentId": record.payment_id,
            "brandId": record.brand_id,
            "briefId": record.brief_id,
            "paymentVerified": True,
        }

        try:
            response = await self.client.post(self.url, json=body, headers=self._headers(record))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "generation_request_rejected",
                payment_id=record.payment_id,
                status_code=e.response.status_code,
            )
            raise DownstreamTriggerFailure(
                f"Generation service returned {e.response.status_code}",
                payment_id=record.payment_id,
            ) from e
        except httpx.HTTPError as e:
            logger.error("generation_request_error", payment_id=record.payment_id, error=str(e))
            raise DownstreamTriggerFailure(str(e), payment_id=record.payment_id) from e
        except ValueError as e:
            raise DownstreamTriggerFailure("Generation service returned invalid JSON", payment_id=record.payment_id) from e

        try:
            result = GenerationResult.model_validate(data)
        except PydanticValidationError as e:
            logger.error("generation_result_invalid", payment_id=record.payment_id, error=str(e))
            raise DownstreamTriggerFailure("Generation result failed validation", payment_id=record.payment_id) from e

        logger.info("generation_triggered", payment_id=record.payment_id, prompt_id=result.prompt_id)
        return result

    async def close(self) -> None:
        await self.client.aclose()
