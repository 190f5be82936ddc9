import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from quotes_aggregator.api.dependencies import (
    bearer_token_protection,
    get_idempotency_coordinator,
    get_metrics,
    get_quotes_service,
    require_idempotency_key,
)
from quotes_aggregator.idempotency import IdempotencyCoordinator, fingerprint_payload
from quotes_aggregator.integrations.contracts.quotes import CreateQuoteRequest
from quotes_aggregator.quotes.service import QuotesService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/quotes",
    tags=["Quotes"],
    dependencies=[Depends(bearer_token_protection)],
)


@router.post("", status_code=201)
async def create_quote(
    body: CreateQuoteRequest,
    idempotency_key: str = Depends(require_idempotency_key),
    service: QuotesService = Depends(get_quotes_service),
    coordinator: IdempotencyCoordinator = Depends(get_idempotency_coordinator),
    metrics=Depends(get_metrics),
):
    """Create an insurance quote. Requires an Idempotency-Key header (UUID v4).

    A repeated key within the TTL returns the original quote with status 200
    and ``X-Idempotency-Result: cached``; nothing is re-priced or re-published.
    """
    fingerprint = fingerprint_payload(body.model_dump(mode="json", by_alias=True))

    async def _create():
        quote = await service.create_quote(body, idempotency_key=idempotency_key)
        return quote.to_response_body()

    outcome = await coordinator.execute(
        idempotency_key,
        _create,
        fingerprint=fingerprint,
        on_hit=lambda _record: metrics.record_idempotency_hit(),
    )

    if outcome.cached:
        return JSONResponse(status_code=200, content=outcome.body, headers={"X-Idempotency-Result": "cached"})

    return JSONResponse(
        status_code=201,
        content=outcome.body,
        headers={
            "X-Idempotency-Result": "created",
            "Location": f"/api/v1/quotes/{outcome.body['quoteId']}",
        },
    )


@router.get("/{quote_id}")
async def get_quote(quote_id: str, service: QuotesService = Depends(get_quotes_service)):
    """Get a previously created quote by ID."""
    return service.get_quote(quote_id).to_response_body()
