"""Error handling for the HTTP layer.

Every error leaves the service in one JSON shape:
``{status, code, error, message, requestId, timestamp[, errors]}``.
Unexpected exceptions are logged with full detail and answered with a generic
500 that doesn't leak internals.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from quotes_aggregator.idempotency.models import IdempotencyConflictError, IdempotencyKeyError
from quotes_aggregator.quotes.service import QuoteNotFoundError

logger = logging.getLogger(__name__)

_CODES_BY_STATUS = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "UNPROCESSABLE_ENTITY",
    429: "TOO_MANY_REQUESTS",
    500: "INTERNAL_SERVER_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class AuthenticationError(ApiError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(401, code, message)


def error_body(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    errors: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "status": status_code,
        "code": code,
        "error": _reason(status_code),
        "message": message,
        "requestId": getattr(request.state, "request_id", ""),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if errors is not None:
        body["errors"] = errors
    return body


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _json(request: Request, status_code: int, code: str, message: str, **kwargs) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(request, status_code, code, message, **kwargs))


async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return _json(request, exc.status_code, exc.code, exc.message)


async def handle_idempotency_key_error(request: Request, exc: IdempotencyKeyError) -> JSONResponse:
    return _json(request, 400, exc.code, exc.message)


async def handle_idempotency_conflict(request: Request, exc: IdempotencyConflictError) -> JSONResponse:
    return _json(request, 409, "IDEMPOTENCY_KEY_CONFLICT", str(exc))


async def handle_not_found(request: Request, exc: QuoteNotFoundError) -> JSONResponse:
    return _json(request, 404, "NOT_FOUND", str(exc))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return _json(request, 400, "VALIDATION_ERROR", "Request body validation failed", errors=errors)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else _reason(exc.status_code)
    response = _json(request, exc.status_code, _CODES_BY_STATUS.get(exc.status_code, "UNKNOWN_ERROR"), detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return _json(request, 500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, handle_api_error)
    app.add_exception_handler(IdempotencyKeyError, handle_idempotency_key_error)
    app.add_exception_handler(IdempotencyConflictError, handle_idempotency_conflict)
    app.add_exception_handler(QuoteNotFoundError, handle_not_found)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected)
