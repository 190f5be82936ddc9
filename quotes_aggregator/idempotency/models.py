from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

MISSING_IDEMPOTENCY_KEY = "MISSING_IDEMPOTENCY_KEY"
INVALID_IDEMPOTENCY_KEY = "INVALID_IDEMPOTENCY_KEY"

_UUID_V4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)


class IdempotencyKeyError(ValueError):
    """Boundary validation failure for the Idempotency-Key header."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class IdempotencyConflictError(RuntimeError):
    """A live key was reused with a different request body (``reject`` policy)."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Idempotency-Key {key} was already used with a different request body.")
        self.key = key


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    result: Dict[str, Any]
    created_at: float
    fingerprint: Optional[str] = None

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at >= ttl_seconds

    def to_json(self) -> str:
        return json.dumps(
            {"key": self.key, "result": self.result, "created_at": self.created_at, "fingerprint": self.fingerprint},
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> "IdempotencyRecord":
        data = json.loads(raw)
        return cls(
            key=data["key"],
            result=data["result"],
            created_at=float(data["created_at"]),
            fingerprint=data.get("fingerprint"),
        )


@dataclass(frozen=True)
class IdempotencyLookup:
    """Outcome of ``check_and_reserve``: a HIT carries the cached record."""

    record: Optional[IdempotencyRecord] = None

    @property
    def hit(self) -> bool:
        return self.record is not None


def validate_idempotency_key(key: Optional[str]) -> str:
    candidate = (key or "").strip()
    if not candidate:
        raise IdempotencyKeyError(MISSING_IDEMPOTENCY_KEY, "Idempotency-Key header is required.")
    if not _UUID_V4.match(candidate):
        raise IdempotencyKeyError(INVALID_IDEMPOTENCY_KEY, "Idempotency-Key must be a valid UUID v4.")
    return candidate


def fingerprint_payload(payload: Any) -> str:
    """Stable SHA-256 of a JSON-able request body (key order independent)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
