"""
Quote contracts.

Defines the request/response shapes shared by the HTTP layer, the quotes
service and the pricing clients:
- CreateQuoteRequest: validated input for quote creation
- PricingResult: what a pricing backend (mock, real HTTP or fallback) returns
- Quote: the created resource returned to callers and cached for idempotency

Wire names are camelCase (``documentId``, ``coverageAmount``); Python
attributes stay snake_case.
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class DocumentType(str, Enum):
    AUTO = "AUTO"
    HOME = "HOME"
    LIFE = "LIFE"
    HEALTH = "HEALTH"
    TRAVEL = "TRAVEL"


class QuoteStatus(str, Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class CreateQuoteRequest(_CamelModel):
    """Quote creation payload after field validation."""

    document_id: str = Field(min_length=3, max_length=100, pattern=r"^[A-Z0-9\-]+$")
    document_type: DocumentType
    insured_name: str = Field(min_length=2, max_length=200)
    insured_email: str
    coverage_amount: float = Field(ge=0.01, le=10_000_000)
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    effective_date: date
    expiry_date: date
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("insured_email", mode="before")
    @classmethod
    def _normalize_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
        return value

    @field_validator("insured_email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        if not _EMAIL_RE.match(value):
            raise ValueError("insuredEmail must be a valid email address")
        return value

    @field_validator("effective_date")
    @classmethod
    def _effective_not_in_past(cls, value: date) -> date:
        if value < date.today():
            raise ValueError("effectiveDate cannot be in the past")
        return value

    @model_validator(mode="after")
    def _expiry_after_effective(self) -> "CreateQuoteRequest":
        if self.expiry_date <= self.effective_date:
            raise ValueError("expiryDate must be after effectiveDate")
        return self


class PricingResult(_CamelModel):
    premium: float
    status: QuoteStatus


class Quote(_CamelModel):
    quote_id: str
    document_id: str
    document_type: DocumentType
    insured_name: str
    insured_email: str
    coverage_amount: float
    currency: str
    effective_date: date
    expiry_date: date
    premium: float
    status: QuoteStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str

    def to_response_body(self) -> Dict[str, Any]:
        """JSON-ready body, identical for fresh and cached responses."""
        return self.model_dump(mode="json", by_alias=True)


class PricingClient(Protocol):
    """Interface every pricing backend (mock or real HTTP) implements."""

    async def price(self, request: CreateQuoteRequest) -> PricingResult:
        ...


__all__ = [
    "CreateQuoteRequest",
    "DocumentType",
    "PricingClient",
    "PricingResult",
    "Quote",
    "QuoteStatus",
]
