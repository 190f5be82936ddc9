from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import ValidationError

from quotes_aggregator.integrations.contracts.quotes import PricingResult, QuoteStatus


class IntegrationResponseError(ValueError):
    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


_STATUS_MAP = {
    "APPROVED": QuoteStatus.APPROVED,
    "QUOTED": QuoteStatus.APPROVED,
    "ACCEPTED": QuoteStatus.APPROVED,
    "PENDING": QuoteStatus.PENDING,
    "REFERRED": QuoteStatus.PENDING,
}


def normalize_pricing_response(raw: Dict[str, Any]) -> PricingResult:
    """Map a partner pricing payload onto ``PricingResult``.

    Anything that can't be trusted raises ``IntegrationResponseError`` so the
    circuit breaker records it as a failed call.
    """
    if not isinstance(raw, dict):
        raise IntegrationResponseError(f"Pricing response must be an object; got {type(raw).__name__}.")

    premium = _coerce_positive_amount(_first_non_empty(raw, "premium", "amount", "premium_amount"), "pricing premium")
    status_raw = str(_first_non_empty(raw, "status", "decision_status", "decisionStatus", default="APPROVED")).upper()
    if status_raw not in _STATUS_MAP:
        raise IntegrationResponseError(f"Unsupported pricing status '{status_raw}'.", payload=raw)

    try:
        return PricingResult(premium=round(premium, 2), status=_STATUS_MAP[status_raw])
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc


def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise IntegrationResponseError(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _coerce_positive_amount(value: Any, label: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise IntegrationResponseError(f"Invalid {label}: {value!r}") from exc
    if amount <= 0:
        raise IntegrationResponseError(f"{label.capitalize()} must be > 0; got {amount}.")
    return amount
