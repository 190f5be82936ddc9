"""
Redis-backed idempotency store for multi-replica deployments. Use when
IDEMPOTENCY_REDIS_URL (or REDIS_URL) is set. Implements the same interface as
quotes_aggregator.database.idempotency_store (in-memory).

``SET key value NX EX ttl`` gives an atomic put-if-absent across replicas, and
Redis owns expiry, so ``evict_expired`` has nothing to do.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

import redis

from quotes_aggregator.idempotency.models import IdempotencyRecord

logger = logging.getLogger(__name__)


class RedisIdempotencyStore:
    def __init__(
        self,
        url: Optional[str] = None,
        ttl_seconds: int = 86400,
        prefix: str = "idempotency",
        client: Any = None,
    ) -> None:
        if client is None and not url:
            raise ValueError("Either a Redis url or a client is required.")
        self._client = client if client is not None else redis.from_url(url, decode_responses=True)
        self.ttl_seconds = int(ttl_seconds)
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def now(self) -> float:
        return time.time()

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        raw = self._client.get(self._key(key))
        if not raw:
            return None
        try:
            return IdempotencyRecord.from_json(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable idempotency record for key %s", key)
            self._client.delete(self._key(key))
            return None

    def put_if_absent(self, record: IdempotencyRecord) -> IdempotencyRecord:
        stored = self._client.set(self._key(record.key), record.to_json(), nx=True, ex=self.ttl_seconds)
        if stored:
            return record
        existing = self.get(record.key)
        if existing is not None:
            return existing
        # the winner expired between SET and GET; retry once, then defer to
        # whichever replica got there first
        if self._client.set(self._key(record.key), record.to_json(), nx=True, ex=self.ttl_seconds):
            return record
        return self.get(record.key) or record

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def evict_expired(self) -> int:
        return 0

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False
