"""
Deterministic rate table shared by the simulated pricing backend and the
circuit-breaker fallback, so a degraded quote carries the same premium as an
approved one.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Union

from quotes_aggregator.integrations.contracts.quotes import DocumentType

RATES: Dict[str, float] = {
    DocumentType.AUTO.value: 0.025,
    DocumentType.HOME.value: 0.018,
    DocumentType.LIFE.value: 0.012,
    DocumentType.HEALTH.value: 0.020,
    DocumentType.TRAVEL.value: 0.008,
}

DEFAULT_RATE = 0.02


def rate_for(document_type: Union[DocumentType, str]) -> float:
    key = document_type.value if isinstance(document_type, DocumentType) else str(document_type).upper()
    return RATES.get(key, DEFAULT_RATE)


def calculate_premium(document_type: Union[DocumentType, str], coverage_amount: float) -> float:
    """coverage * rate, rounded half-up to 2 decimal places."""
    premium = Decimal(str(coverage_amount)) * Decimal(str(rate_for(document_type)))
    return float(premium.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
