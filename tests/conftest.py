"""Pytest fixtures: deterministic pricing, clocks and event sinks."""

import asyncio
from typing import Any, Callable, Dict, List

import pytest
from fastapi.testclient import TestClient

from quotes_aggregator.api.main import create_app
from quotes_aggregator.integrations.contracts.quotes import CreateQuoteRequest, PricingResult, QuoteStatus
from quotes_aggregator.integrations.policy.rating import calculate_premium
from quotes_aggregator.utils.config_loader import AuthConfig, ServerConfig, ServiceConfig

DEV_TOKEN = "pytest-dev-token"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePricingClient:
    """Pricing backend that succeeds or fails on command and counts calls."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def price(self, request: CreateQuoteRequest) -> PricingResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("pricing backend unavailable")
        return PricingResult(
            premium=calculate_premium(request.document_type, request.coverage_amount),
            status=QuoteStatus.APPROVED,
        )


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: List[Dict[str, Any]] = []

    async def publish(self, event: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("event bus down")
        self.events.append(event)

    def close(self) -> None:
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pricer():
    return FakePricingClient()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def failing_publisher():
    return RecordingPublisher(fail=True)


@pytest.fixture
def service_config():
    return ServiceConfig(
        server=ServerConfig(env="test"),
        auth=AuthConfig(dev_api_token=DEV_TOKEN),
    )


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {DEV_TOKEN}"}


@pytest.fixture
def quote_payload() -> Callable[..., Dict[str, Any]]:
    def _build(**overrides: Any) -> Dict[str, Any]:
        payload = {
            "documentId": "DOC123",
            "documentType": "AUTO",
            "insuredName": "Jane Doe",
            "insuredEmail": "jane@example.com",
            "coverageAmount": 50000,
            "currency": "USD",
            "effectiveDate": "2099-01-01",
            "expiryDate": "2100-01-01",
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def quote_request(quote_payload):
    def _build(**overrides: Any) -> CreateQuoteRequest:
        return CreateQuoteRequest(**quote_payload(**overrides))

    return _build


@pytest.fixture
def app(service_config, pricer, publisher):
    return create_app(service_config, pricing_client=pricer, publisher=publisher)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
