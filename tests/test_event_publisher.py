"""QuoteIssued event envelope and publishers."""

import json
import logging

import pytest

from quotes_aggregator.events.publisher import (
    EVENT_SOURCE,
    EVENT_TYPE,
    EVENT_VERSION,
    NullPublisher,
    RedisStreamPublisher,
    build_quote_issued_event,
    drain_background_tasks,
    publish_in_background,
)
from quotes_aggregator.integrations.contracts.quotes import Quote, QuoteStatus


class FakeStreamClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.entries = []
        self.closed = False

    def xadd(self, stream, fields):
        if self.fail:
            raise ConnectionError("stream unavailable")
        self.entries.append((stream, fields))
        return "1-0"

    def close(self):
        self.closed = True


def _quote(quote_request):
    request = quote_request()
    return Quote(
        quote_id="q-0123456789abcdef",
        document_id=request.document_id,
        document_type=request.document_type,
        insured_name=request.insured_name,
        insured_email=request.insured_email,
        coverage_amount=request.coverage_amount,
        currency=request.currency,
        effective_date=request.effective_date,
        expiry_date=request.expiry_date,
        premium=1250.0,
        status=QuoteStatus.APPROVED,
        created_at="2099-01-01T00:00:00+00:00",
        updated_at="2099-01-01T00:00:00+00:00",
    )


def test_event_envelope(quote_request):
    event = build_quote_issued_event(_quote(quote_request), "key-1")

    assert event["eventType"] == EVENT_TYPE
    assert event["eventVersion"] == EVENT_VERSION
    assert event["source"] == EVENT_SOURCE
    assert event["idempotencyKey"] == "key-1"
    assert event["eventId"]
    assert event["data"]["quoteId"] == "q-0123456789abcdef"
    assert event["data"]["status"] == "APPROVED"
    assert event["data"]["effectiveDate"] == "2099-01-01"
    assert "metadata" not in event["data"]


@pytest.mark.asyncio
async def test_redis_stream_publisher_appends_to_stream(quote_request):
    fake = FakeStreamClient()
    publisher = RedisStreamPublisher(stream="quotes.test", client=fake)
    event = build_quote_issued_event(_quote(quote_request))

    await publisher.publish(event)
    publisher.close()

    stream, fields = fake.entries[0]
    assert stream == "quotes.test"
    assert fields["eventType"] == EVENT_TYPE
    assert fields["status"] == "APPROVED"
    assert json.loads(fields["body"])["data"]["quoteId"] == "q-0123456789abcdef"
    assert fake.closed is True


@pytest.mark.asyncio
async def test_background_publish_swallows_errors(quote_request, caplog):
    publisher = RedisStreamPublisher(client=FakeStreamClient(fail=True))

    with caplog.at_level(logging.ERROR):
        task = publish_in_background(publisher, _quote(quote_request))
        await drain_background_tasks()

    assert task.done()
    assert task.exception() is None
    assert "Failed to publish QuoteIssued event" in caplog.text


@pytest.mark.asyncio
async def test_null_publisher_warns_once(caplog):
    publisher = NullPublisher()

    with caplog.at_level(logging.WARNING):
        await publisher.publish({})
        await publisher.publish({})

    assert caplog.text.count("Event sink not configured") == 1


def test_redis_stream_publisher_requires_url_or_client():
    with pytest.raises(ValueError):
        RedisStreamPublisher()
