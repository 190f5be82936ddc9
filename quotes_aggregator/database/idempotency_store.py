"""
In-memory idempotency store for single-process deployments and tests.

Records expire lazily: a lookup that finds an expired record removes it and
reports a miss. ``put_if_absent`` is atomic under the store lock, so only the
first successful writer for a key wins.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from quotes_aggregator.idempotency.models import IdempotencyRecord


class InMemoryIdempotencyStore:
    def __init__(self, ttl_seconds: float = 86400, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._records: Dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.is_expired(self._clock(), self.ttl_seconds):
                del self._records[key]
                return None
            return record

    def put_if_absent(self, record: IdempotencyRecord) -> IdempotencyRecord:
        """Store ``record`` unless a live one exists; returns whichever is stored."""
        with self._lock:
            existing = self._records.get(record.key)
            if existing is not None and not existing.is_expired(self._clock(), self.ttl_seconds):
                return existing
            self._records[record.key] = record
            return record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def evict_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, r in self._records.items() if r.is_expired(now, self.ttl_seconds)]
            for key in expired:
                del self._records[key]
            return len(expired)

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._records)
