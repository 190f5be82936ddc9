"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from quotes_aggregator.api.errors import handle_unexpected, register_exception_handlers
from quotes_aggregator.api.quotes_router import router as quotes_router
from quotes_aggregator.database.quotes_store import InMemoryQuoteStore
from quotes_aggregator.events.publisher import NullPublisher, RedisStreamPublisher, drain_background_tasks
from quotes_aggregator.idempotency import IdempotencyCoordinator
from quotes_aggregator.integrations.clients.mocks.pricing import SimulatedPricingClient
from quotes_aggregator.integrations.clients.real_http.pricing import HttpPricingClient
from quotes_aggregator.observability.metrics import MetricsService
from quotes_aggregator.quotes.service import QuotesService
from quotes_aggregator.resilience.circuit_breaker import CircuitState
from quotes_aggregator.utils.config_loader import ServiceConfig, load_service_config

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ============================================================================
# DEPENDENCY SELECTION
# ============================================================================


def _select_pricing_client(config: ServiceConfig):
    if config.pricing.mode == "real":
        if not config.pricing.base_url:
            logger.warning("PRICING_MODE=real but PARTNER_PRICING_API_URL is not set; using simulated pricing")
        else:
            return HttpPricingClient(base_url=config.pricing.base_url, api_key=config.pricing.api_key)
    return SimulatedPricingClient(
        failure_rate=config.pricing.failure_rate,
        min_latency_ms=config.pricing.min_latency_ms,
        max_latency_ms=config.pricing.max_latency_ms,
    )


def _select_idempotency_store(config: ServiceConfig):
    # Use Redis when configured so replicas share idempotency records
    if config.idempotency.redis_url:
        from quotes_aggregator.database.idempotency_store_redis import RedisIdempotencyStore

        return RedisIdempotencyStore(url=config.idempotency.redis_url, ttl_seconds=config.idempotency.ttl_seconds)

    from quotes_aggregator.database.idempotency_store import InMemoryIdempotencyStore

    return InMemoryIdempotencyStore(ttl_seconds=config.idempotency.ttl_seconds)


def _select_publisher(config: ServiceConfig):
    if config.events.redis_url:
        return RedisStreamPublisher(url=config.events.redis_url, stream=config.events.stream)
    return NullPublisher()


def create_app(
    config: Optional[ServiceConfig] = None,
    *,
    pricing_client=None,
    idempotency_store=None,
    publisher=None,
    quote_store=None,
) -> FastAPI:
    """Build the app. Collaborators default to what the configuration selects."""
    config = config or load_service_config()
    logging.getLogger().setLevel(config.server.log_level)

    app = FastAPI(
        title="Quotes Aggregator API",
        description="Idempotent insurance quote creation with circuit-breaker protected pricing",
        version=config.server.version,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    metrics = MetricsService()
    store = idempotency_store if idempotency_store is not None else _select_idempotency_store(config)
    coordinator = IdempotencyCoordinator(
        store,
        payload_mismatch=config.idempotency.payload_mismatch,
        lock_in_flight=config.idempotency.lock_in_flight,
        sweep_interval=config.idempotency.sweep_interval_seconds,
    )
    event_publisher = publisher if publisher is not None else _select_publisher(config)
    pricer = pricing_client if pricing_client is not None else _select_pricing_client(config)
    quotes_service = QuotesService(
        pricer,
        quote_store if quote_store is not None else InMemoryQuoteStore(),
        metrics=metrics,
        publisher=event_publisher,
        breaker_config=config.circuit_breaker,
    )

    app.state.config = config
    app.state.metrics = metrics
    app.state.idempotency = coordinator
    app.state.quotes_service = quotes_service
    app.state.publisher = event_publisher
    app.state.started_at = time.time()

    register_exception_handlers(app)
    app.include_router(quotes_router)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            # answer here so 500s still get timed and carry the request id
            response = await handle_unexpected(request, exc)
        route = request.scope.get("route")
        metrics.observe_request(
            request.method,
            getattr(route, "path", "unmatched"),
            response.status_code,
            time.perf_counter() - started,
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health", tags=["Health"])
    async def health_check():
        breaker = quotes_service.breaker.snapshot()
        store_ok = coordinator.store_backend.ping()
        healthy = breaker["state"] == CircuitState.CLOSED.value and store_ok
        return {
            "status": "healthy" if healthy else "degraded",
            "uptime": int(time.time() - app.state.started_at),
            "version": config.server.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "circuitBreaker": breaker,
                "idempotencyStore": "connected" if store_ok else "unavailable",
            },
        }

    @app.get("/metrics", tags=["Health"])
    async def prometheus_metrics():
        body, content_type = metrics.render()
        return Response(content=body, media_type=content_type)

    # ========================================================================
    # STARTUP/SHUTDOWN EVENTS
    # ========================================================================
    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "Starting Quotes Aggregator API (env=%s, pricing=%s, idempotency_store=%s)",
            config.server.env,
            type(pricer).__name__,
            type(store).__name__,
        )
        if not store.ping():
            logger.warning("Idempotency store connection failed")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down Quotes Aggregator API...")
        await drain_background_tasks()
        event_publisher.close()

    return app


app = create_app()
