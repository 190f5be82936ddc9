"""
Simulated Pricing Client.

Purpose:
- Stands in for the external quotes aggregation engine during development
- Does NOT make network calls
- Adds random latency and a random failure probability so the circuit breaker
  has something to protect against

Swap:
Replace with the real HTTP pricing client in clients/real_http/pricing.py when
the partner pricing endpoint is configured (PRICING_MODE=real).
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Optional

from quotes_aggregator.integrations.contracts.quotes import CreateQuoteRequest, PricingResult, QuoteStatus
from quotes_aggregator.integrations.policy.rating import calculate_premium

logger = logging.getLogger(__name__)


class PricingBackendError(RuntimeError):
    """Raised when the (simulated) aggregation engine fails a call."""


class SimulatedPricingClient:
    def __init__(
        self,
        failure_rate: float = 0.05,
        min_latency_ms: int = 20,
        max_latency_ms: int = 120,
        rng: Optional[random.Random] = None,
    ) -> None:
        if max_latency_ms < min_latency_ms:
            raise ValueError("max_latency_ms must be >= min_latency_ms")
        self.failure_rate = failure_rate
        self.min_latency_ms = min_latency_ms
        self.max_latency_ms = max_latency_ms
        self._rng = rng or random.Random()

    async def price(self, request: CreateQuoteRequest) -> PricingResult:
        latency_ms = self._rng.uniform(self.min_latency_ms, self.max_latency_ms)
        await asyncio.sleep(latency_ms / 1000.0)

        if self._rng.random() < self.failure_rate:
            logger.debug("Simulated pricing failure for documentId=%s", request.document_id)
            raise PricingBackendError("External aggregator timeout")

        premium = calculate_premium(request.document_type, request.coverage_amount)
        return PricingResult(premium=premium, status=QuoteStatus.APPROVED)
