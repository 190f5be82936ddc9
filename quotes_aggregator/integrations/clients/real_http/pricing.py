"""
Real Pricing HTTP Client.

Used when the partner pricing endpoint is configured (PRICING_MODE=real).
Timeouts and retries are NOT handled here: the circuit breaker wrapping this
client owns the timeout, and the fallback replaces retries.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from quotes_aggregator.integrations.contracts.quotes import CreateQuoteRequest, PricingResult
from quotes_aggregator.integrations.policy.response_wrappers import normalize_pricing_response

logger = logging.getLogger(__name__)


class HttpPricingClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        premiums_path: str = "/premiums",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("PARTNER_PRICING_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("PARTNER_PRICING_API_KEY", "")
        self.premiums_path = premiums_path
        self._transport = transport
        if not self.base_url:
            logger.warning("Partner pricing API URL is not set.")

    async def price(self, request: CreateQuoteRequest) -> PricingResult:
        if not self.base_url:
            raise ValueError("PARTNER_PRICING_API_URL is not configured.")

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "documentType": request.document_type.value,
            "coverageAmount": request.coverage_amount,
            "currency": request.currency,
        }

        url = f"{self.base_url}{self.premiums_path}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            logger.error("HTTP error from partner pricing API: %s", e.response.status_code)
            raise
        except httpx.RequestError as e:
            logger.error("Request error connecting to partner pricing API: %s", e)
            raise

        return normalize_pricing_response(data)
