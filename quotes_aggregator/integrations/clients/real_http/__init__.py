"""
Real HTTP integration clients.

Used when PRICING_MODE=real and PARTNER_PRICING_API_URL is configured.
Responses are normalised through integrations.policy.response_wrappers.
"""

from .pricing import HttpPricingClient

__all__ = ["HttpPricingClient"]
