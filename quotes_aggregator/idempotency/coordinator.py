"""IdempotencyCoordinator - deduplicates quote creation by Idempotency-Key.

For a given key the operation runs at most once per TTL window: a lookup that
finds a live record hands back the cached result verbatim, and only successful
outcomes are ever stored. With ``lock_in_flight`` enabled, concurrent requests
sharing a key are serialised in-process so the second one reads the first
one's result instead of executing again.

Expired records are swept from the store at most once per ``sweep_interval``
seconds, piggybacking on ``store`` so one-off keys don't accumulate.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from quotes_aggregator.idempotency.models import (
    IdempotencyConflictError,
    IdempotencyLookup,
    IdempotencyRecord,
)

logger = logging.getLogger(__name__)

KEY_WINS = "key_wins"
REJECT = "reject"


@dataclass(frozen=True)
class IdempotentOutcome:
    body: Dict[str, Any]
    cached: bool


class IdempotencyCoordinator:
    def __init__(
        self,
        store,
        *,
        payload_mismatch: str = KEY_WINS,
        lock_in_flight: bool = True,
        sweep_interval: float = 60.0,
    ) -> None:
        if payload_mismatch not in (KEY_WINS, REJECT):
            raise ValueError(f"Unknown payload_mismatch policy '{payload_mismatch}'")
        self.store_backend = store
        self.payload_mismatch = payload_mismatch
        self.lock_in_flight = lock_in_flight
        self.sweep_interval = sweep_interval
        self._last_sweep: Optional[float] = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def check_and_reserve(self, key: str, fingerprint: Optional[str] = None) -> IdempotencyLookup:
        record = self.store_backend.get(key)
        if record is None:
            return IdempotencyLookup()

        if (
            self.payload_mismatch == REJECT
            and fingerprint is not None
            and record.fingerprint is not None
            and record.fingerprint != fingerprint
        ):
            logger.warning("Idempotency-Key %s reused with a different request body", key)
            raise IdempotencyConflictError(key)

        logger.info("Cache hit for idempotency key %s", key)
        return IdempotencyLookup(record=record)

    def store(self, key: str, result: Dict[str, Any], fingerprint: Optional[str] = None) -> IdempotencyRecord:
        self._maybe_sweep()
        candidate = IdempotencyRecord(
            key=key,
            result=result,
            created_at=self.store_backend.now(),
            fingerprint=fingerprint,
        )
        stored = self.store_backend.put_if_absent(candidate)
        if stored is not candidate:
            logger.warning("Idempotency key %s already has a stored result; keeping the original", key)
        return stored

    def evict_expired(self) -> int:
        removed = self.store_backend.evict_expired()
        if removed:
            logger.debug("Evicted %d expired idempotency records", removed)
        return removed

    def _maybe_sweep(self) -> None:
        now = self.store_backend.now()
        if self._last_sweep is not None and now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        self.evict_expired()

    @asynccontextmanager
    async def reservation(self, key: str) -> AsyncIterator[None]:
        if not self.lock_in_flight:
            yield
            return

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    async def execute(
        self,
        key: str,
        operation: Callable[[], Awaitable[Dict[str, Any]]],
        fingerprint: Optional[str] = None,
        on_hit: Optional[Callable[[IdempotencyRecord], None]] = None,
    ) -> IdempotentOutcome:
        """Look up ``key``; on a miss run ``operation`` and store its result.

        Errors from ``operation`` propagate and nothing is stored, so a retry
        with the same key is free to execute again.
        """
        async with self.reservation(key):
            lookup = self.check_and_reserve(key, fingerprint)
            if lookup.hit:
                if on_hit is not None:
                    on_hit(lookup.record)
                return IdempotentOutcome(body=lookup.record.result, cached=True)

            result = await operation()
            stored = self.store(key, result, fingerprint)
            return IdempotentOutcome(body=stored.result, cached=False)
