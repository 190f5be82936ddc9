"""
QuoteIssued event publishing.

- RedisStreamPublisher appends the event envelope to a Redis stream when
  EVENTS_REDIS_URL is configured.
- NullPublisher is used otherwise: events are skipped with a warning.
- publish_in_background never blocks the HTTP response; failures are logged
  and swallowed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import redis

from quotes_aggregator.integrations.contracts.quotes import Quote

logger = logging.getLogger(__name__)

EVENT_TYPE = "com.example.quotes.QuoteIssued"
EVENT_VERSION = "1.0"
EVENT_SOURCE = "quotes-aggregator"

_background_tasks: Set[asyncio.Task] = set()


def build_quote_issued_event(quote: Quote, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
    body = quote.to_response_body()
    return {
        "eventId": str(uuid.uuid4()),
        "eventType": EVENT_TYPE,
        "eventVersion": EVENT_VERSION,
        "source": EVENT_SOURCE,
        "time": datetime.now(timezone.utc).isoformat(),
        "idempotencyKey": idempotency_key,
        "data": {
            field: body[field]
            for field in (
                "quoteId",
                "documentId",
                "documentType",
                "insuredName",
                "insuredEmail",
                "coverageAmount",
                "currency",
                "premium",
                "status",
                "effectiveDate",
                "expiryDate",
                "createdAt",
            )
        },
    }


class NullPublisher:
    def __init__(self) -> None:
        self._warned = False

    async def publish(self, event: Dict[str, Any]) -> None:
        if not self._warned:
            logger.warning("Event sink not configured; QuoteIssued events will be skipped")
            self._warned = True

    def close(self) -> None:
        return None


class RedisStreamPublisher:
    def __init__(self, url: Optional[str] = None, stream: str = "quotes.issued", client: Any = None) -> None:
        if client is None and not url:
            raise ValueError("Either a Redis url or a client is required.")
        self._client = client if client is not None else redis.from_url(url, decode_responses=True)
        self.stream = stream

    async def publish(self, event: Dict[str, Any]) -> None:
        fields = {
            "eventId": event["eventId"],
            "eventType": event["eventType"],
            "status": event["data"]["status"],
            "body": json.dumps(event, default=str),
        }
        await asyncio.to_thread(self._client.xadd, self.stream, fields)
        logger.info("QuoteIssued published quoteId=%s", event["data"]["quoteId"])

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.debug("Ignoring error while closing event publisher: %s", e)


async def _publish_safely(publisher, event: Dict[str, Any]) -> None:
    try:
        await publisher.publish(event)
    except Exception as e:
        logger.error("Failed to publish QuoteIssued event %s: %s", event.get("eventId"), e)


def publish_in_background(publisher, quote: Quote, idempotency_key: Optional[str] = None) -> asyncio.Task:
    """Schedule the QuoteIssued event without awaiting it."""
    event = build_quote_issued_event(quote, idempotency_key)
    task = asyncio.get_running_loop().create_task(_publish_safely(publisher, event))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks() -> None:
    """Wait for in-flight publications (used on shutdown and in tests)."""
    loop = asyncio.get_running_loop()
    pending = [task for task in _background_tasks if task.get_loop() is loop]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
