"""
Mock integration clients.

These clients return simulated responses without calling any external API.
They are used when:
- The partner pricing endpoint is not yet available
- We want to exercise the circuit breaker end-to-end (random latency/failures)

Important:
- Mock clients must follow the SAME interface as real HTTP clients
  (``async price(request) -> PricingResult``).
"""

from .pricing import PricingBackendError, SimulatedPricingClient

__all__ = ["PricingBackendError", "SimulatedPricingClient"]
