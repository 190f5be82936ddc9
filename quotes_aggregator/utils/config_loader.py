"""
Service configuration loader (server, auth, idempotency, circuit breaker,
pricing backend, events).

Values come from ``config/service_config.yml`` when it exists; environment
variables override the file so deployments can be tuned without a rebuild.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    port: int = Field(default=3000, ge=1, le=65535)
    env: str = "development"
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    version: str = "1.0.0"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class AuthConfig(BaseModel):
    dev_api_token: str = ""


class IdempotencyConfig(BaseModel):
    ttl_seconds: int = Field(default=86400, ge=1)
    payload_mismatch: Literal["key_wins", "reject"] = "key_wins"
    lock_in_flight: bool = True
    sweep_interval_seconds: float = Field(default=60, ge=0)
    redis_url: Optional[str] = None


class CircuitBreakerConfig(BaseModel):
    timeout_ms: int = Field(default=3000, ge=1)
    error_threshold_percentage: float = Field(default=50, gt=0, le=100)
    reset_timeout_ms: int = Field(default=30000, ge=0)
    volume_threshold: int = Field(default=5, ge=1)
    rolling_window_size: Optional[int] = Field(default=None, ge=1)


class PricingConfig(BaseModel):
    mode: Literal["mock", "real"] = "mock"
    base_url: str = ""
    api_key: str = ""
    failure_rate: float = Field(default=0.05, ge=0.0, le=1.0)
    min_latency_ms: int = Field(default=20, ge=0)
    max_latency_ms: int = Field(default=120, ge=0)


class EventsConfig(BaseModel):
    redis_url: Optional[str] = None
    stream: str = "quotes.issued"


class ServiceConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)

    @property
    def is_production(self) -> bool:
        return self.server.env.lower() == "production"


# env var -> (section, field)
_ENV_OVERRIDES = {
    "PORT": ("server", "port"),
    "APP_ENV": ("server", "env"),
    "LOG_LEVEL": ("server", "log_level"),
    "DEV_API_TOKEN": ("auth", "dev_api_token"),
    "IDEMPOTENCY_TTL": ("idempotency", "ttl_seconds"),
    "IDEMPOTENCY_PAYLOAD_MISMATCH": ("idempotency", "payload_mismatch"),
    "IDEMPOTENCY_LOCK_IN_FLIGHT": ("idempotency", "lock_in_flight"),
    "IDEMPOTENCY_SWEEP_INTERVAL": ("idempotency", "sweep_interval_seconds"),
    "REDIS_URL": ("idempotency", "redis_url"),
    "IDEMPOTENCY_REDIS_URL": ("idempotency", "redis_url"),
    "CB_TIMEOUT": ("circuit_breaker", "timeout_ms"),
    "CB_ERROR_THRESHOLD": ("circuit_breaker", "error_threshold_percentage"),
    "CB_RESET_TIMEOUT": ("circuit_breaker", "reset_timeout_ms"),
    "CB_VOLUME_THRESHOLD": ("circuit_breaker", "volume_threshold"),
    "PRICING_MODE": ("pricing", "mode"),
    "PARTNER_PRICING_API_URL": ("pricing", "base_url"),
    "PARTNER_PRICING_API_KEY": ("pricing", "api_key"),
    "PRICING_FAILURE_RATE": ("pricing", "failure_rate"),
    "EVENTS_REDIS_URL": ("events", "redis_url"),
    "EVENTS_STREAM": ("events", "stream"),
}


def _default_config_path() -> Path:
    return Path(__file__).parent.parent.parent / "config" / "service_config.yml"


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    # IDEMPOTENCY_REDIS_URL is listed after REDIS_URL so it wins when both are set
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        data[section] = data.get(section) or {}
        data[section][field] = raw.strip()
    return data


def load_service_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServiceConfig:
    """
    Load and validate the service configuration.

    Args:
        config_path: YAML file to read. Defaults to config/service_config.yml;
            a missing file means "use defaults".
        environ: Mapping used for overrides. Defaults to ``os.environ``.

    Raises:
        ValidationError: If the merged configuration doesn't match the schema
    """
    if config_path is None:
        config_path = _default_config_path()
    if environ is None:
        environ = os.environ

    data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        # sections left empty in the file (`events:`) load as None
        data = {section: values if values is not None else {} for section, values in data.items()}
    else:
        logger.info("Service config file not found at %s; using defaults", config_path)

    data = _apply_env_overrides(data, environ)

    try:
        cfg = ServiceConfig(**data)
        logger.info("Loaded service config (env=%s)", cfg.server.env)
        return cfg
    except ValidationError as e:
        logger.error("Service config validation failed: %s", e)
        raise
