"""Prometheus metrics for the quotes service.

Each MetricsService owns its own CollectorRegistry so several app instances
(tests in particular) never collide on metric names. The registry also carries
the default process, platform and GC collectors, and every service metric is
labelled `app="quotes-aggregator"`.

Example:
    >>> metrics = MetricsService()
    >>> metrics.record_quote_created("APPROVED", "AUTO")
    >>> body, content_type = metrics.render()
"""

from __future__ import annotations

import logging
from typing import Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from quotes_aggregator.resilience.circuit_breaker import CircuitState

logger = logging.getLogger(__name__)

APP_LABEL = "quotes-aggregator"


class MetricsService:
    """Counters, gauges and histograms exposed on ``GET /metrics``.

    - quotes_created_total{app, status, document_type}
    - idempotency_hits_total{app}
    - circuit_breaker_state{app, service} (0=closed, 1=open, 2=half-open)
    - http_request_duration_seconds{app, method, route, status_code}
    - process_*, python_info and python_gc_* defaults
    """

    def __init__(self, registry: CollectorRegistry | None = None, app: str = APP_LABEL) -> None:
        self.app = app
        self.registry = registry or CollectorRegistry()
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["app", "method", "route", "status_code"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5],
            registry=self.registry,
        )
        self.quotes_created_total = Counter(
            "quotes_created_total",
            "Total number of quotes created",
            ["app", "status", "document_type"],
            registry=self.registry,
        )
        self.idempotency_hits_total = Counter(
            "idempotency_hits_total",
            "Total number of idempotent requests served from cache",
            ["app"],
            registry=self.registry,
        )
        self.circuit_breaker_state = Gauge(
            "circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=open, 2=half-open)",
            ["app", "service"],
            registry=self.registry,
        )

    def record_quote_created(self, status: str, document_type: str) -> None:
        self.quotes_created_total.labels(app=self.app, status=status, document_type=document_type).inc()

    def record_idempotency_hit(self) -> None:
        self.idempotency_hits_total.labels(app=self.app).inc()

    def set_circuit_state(self, service: str, state: CircuitState) -> None:
        self.circuit_breaker_state.labels(app=self.app, service=service).set(state.gauge_value)

    def on_circuit_state_change(self, service: str, old_state: CircuitState, new_state: CircuitState) -> None:
        """State listener handed to the CircuitBreaker."""
        self.set_circuit_state(service, new_state)

    def observe_request(self, method: str, route: str, status_code: int, seconds: float) -> None:
        self.http_request_duration.labels(app=self.app, method=method, route=route, status_code=str(status_code)).observe(seconds)

    def sample(self, name: str, **labels: str) -> float:
        """Current value of a sample, 0.0 when it hasn't been recorded yet."""
        value = self.registry.get_sample_value(name, {"app": self.app, **labels})
        return value if value is not None else 0.0

    def render(self) -> Tuple[bytes, str]:
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
