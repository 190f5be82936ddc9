"""
Integrations layer.
This package contains all code used to communicate with the external pricing
engine (the quotes aggregation backend).

Key rule:
- The quotes service MUST NOT call external APIs directly.
- It calls a pricing client (under quotes_aggregator/integrations/clients)
  through the circuit breaker.
- We use the SIMULATED client during development and swap to the REAL_HTTP
  client when the partner endpoint is available.

Switching implementations:
- The selection of simulated vs real clients happens in ONE place
  (quotes_aggregator/api/main.py), driven by PRICING_MODE.
"""

from .contracts.quotes import (
    CreateQuoteRequest,
    DocumentType,
    PricingClient,
    PricingResult,
    Quote,
    QuoteStatus,
)
from .policy.rating import RATES, calculate_premium

__all__ = [
    "CreateQuoteRequest", "DocumentType", "PricingClient", "PricingResult",
    "Quote", "QuoteStatus", "RATES", "calculate_premium",
]
