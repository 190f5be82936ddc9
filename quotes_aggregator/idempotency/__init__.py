"""
Idempotent request handling.

POST endpoints that create resources accept an ``Idempotency-Key`` header.
The coordinator makes sure a key maps to one stored result for the TTL window;
stores live under quotes_aggregator.database (in-memory or Redis).
"""

from .coordinator import IdempotencyCoordinator, IdempotentOutcome
from .models import (
    INVALID_IDEMPOTENCY_KEY,
    MISSING_IDEMPOTENCY_KEY,
    IdempotencyConflictError,
    IdempotencyKeyError,
    IdempotencyLookup,
    IdempotencyRecord,
    fingerprint_payload,
    validate_idempotency_key,
)

__all__ = [
    "IdempotencyCoordinator",
    "IdempotentOutcome",
    "IdempotencyConflictError",
    "IdempotencyKeyError",
    "IdempotencyLookup",
    "IdempotencyRecord",
    "INVALID_IDEMPOTENCY_KEY",
    "MISSING_IDEMPOTENCY_KEY",
    "fingerprint_payload",
    "validate_idempotency_key",
]
