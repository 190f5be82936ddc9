"""
Quote creation and lookup.

Premiums come from the configured pricing client (simulated or partner HTTP)
behind a circuit breaker. When the breaker is open, or the call fails or
times out, the fallback prices the quote from the same rate table and marks it
PENDING, so callers always get a quote back.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from quotes_aggregator.events.publisher import NullPublisher, publish_in_background
from quotes_aggregator.integrations.contracts.quotes import (
    CreateQuoteRequest,
    PricingClient,
    PricingResult,
    Quote,
    QuoteStatus,
)
from quotes_aggregator.integrations.policy.rating import calculate_premium
from quotes_aggregator.resilience.circuit_breaker import CircuitBreaker, CircuitState
from quotes_aggregator.utils.config_loader import CircuitBreakerConfig

logger = logging.getLogger(__name__)

PRICING_SERVICE_NAME = "external-aggregator"


class QuoteNotFoundError(LookupError):
    def __init__(self, quote_id: str) -> None:
        super().__init__(f'Quote with id "{quote_id}" not found')
        self.quote_id = quote_id


class QuotesService:
    def __init__(
        self,
        pricing_client: PricingClient,
        quote_store,
        metrics=None,
        publisher=None,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = breaker_config or CircuitBreakerConfig()
        self.quote_store = quote_store
        self.metrics = metrics
        self.publisher = publisher or NullPublisher()
        self.breaker = CircuitBreaker(
            pricing_client.price,
            name=PRICING_SERVICE_NAME,
            timeout=cfg.timeout_ms / 1000.0,
            error_threshold_percentage=cfg.error_threshold_percentage,
            reset_timeout=cfg.reset_timeout_ms / 1000.0,
            volume_threshold=cfg.volume_threshold,
            rolling_window_size=cfg.rolling_window_size,
            fallback=self.fallback_pricing,
            on_state_change=metrics.on_circuit_state_change if metrics is not None else None,
            clock=clock,
        )
        if metrics is not None:
            metrics.set_circuit_state(PRICING_SERVICE_NAME, CircuitState.CLOSED)

    @staticmethod
    def fallback_pricing(request: CreateQuoteRequest) -> PricingResult:
        logger.warning("Circuit breaker fallback for documentId=%s", request.document_id)
        premium = calculate_premium(request.document_type, request.coverage_amount)
        return PricingResult(premium=premium, status=QuoteStatus.PENDING)

    async def create_quote(self, request: CreateQuoteRequest, idempotency_key: Optional[str] = None) -> Quote:
        logger.info("Creating quote for documentId=%s", request.document_id)

        pricing: PricingResult = await self.breaker.fire(request)

        now = datetime.now(timezone.utc).isoformat()
        quote = Quote(
            quote_id=f"q-{uuid.uuid4().hex[:16]}",
            document_id=request.document_id,
            document_type=request.document_type,
            insured_name=request.insured_name,
            insured_email=request.insured_email,
            coverage_amount=request.coverage_amount,
            currency=request.currency,
            effective_date=request.effective_date,
            expiry_date=request.expiry_date,
            premium=pricing.premium,
            status=pricing.status,
            metadata=request.metadata or {},
            created_at=now,
            updated_at=now,
        )
        self.quote_store.put(quote)

        publish_in_background(self.publisher, quote, idempotency_key)

        if self.metrics is not None:
            self.metrics.record_quote_created(quote.status.value, quote.document_type.value)

        logger.info("Quote created quoteId=%s status=%s premium=%s", quote.quote_id, quote.status.value, quote.premium)
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        quote = self.quote_store.get(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote
