import base64
import hmac
import json
import logging
import re
from typing import Any, Dict, Optional

from fastapi import Header, Request

from quotes_aggregator.api.errors import AuthenticationError
from quotes_aggregator.idempotency import IdempotencyCoordinator, validate_idempotency_key
from quotes_aggregator.quotes.service import QuotesService

logger = logging.getLogger(__name__)

_JWT_SHAPE = re.compile(r"^[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+$")


def get_quotes_service(request: Request) -> QuotesService:
    return request.app.state.quotes_service


def get_idempotency_coordinator(request: Request) -> IdempotencyCoordinator:
    return request.app.state.idempotency


def get_metrics(request: Request):
    return request.app.state.metrics


def _decode_jwt_claims(token: str) -> Dict[str, Any]:
    payload_segment = token.split(".")[1]
    padded = payload_segment + "=" * (-len(payload_segment) % 4)
    claims = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
    if not isinstance(claims, dict):
        raise ValueError("JWT payload is not an object")
    return claims


async def bearer_token_protection(
    request: Request,
    authorization: Optional[str] = Header(default=None),
):
    """Structural bearer-token check; signature validation belongs to the gateway.

    Outside production the configured DEV_API_TOKEN is accepted as-is so test
    clients can authenticate without a real JWT.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError(
            "MISSING_TOKEN",
            'Missing or invalid Bearer token. Include "Authorization: Bearer <token>" header.',
        )

    token = authorization[len("Bearer "):].strip()
    config = request.app.state.config
    dev_token = config.auth.dev_api_token

    if not config.is_production and dev_token and hmac.compare_digest(token, dev_token):
        request.state.user = {"sub": "dev-user", "scope": "quotes:write quotes:read"}
        return

    if not _JWT_SHAPE.match(token):
        raise AuthenticationError("INVALID_TOKEN", "Invalid token format.")

    try:
        claims = _decode_jwt_claims(token)
    except ValueError:
        raise AuthenticationError("INVALID_TOKEN", "Token validation failed.")
    if not claims.get("sub"):
        raise AuthenticationError("INVALID_TOKEN", "Token validation failed.")

    request.state.user = claims


async def require_idempotency_key(
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> str:
    key = validate_idempotency_key(idempotency_key)
    request.state.idempotency_key = key
    return key
