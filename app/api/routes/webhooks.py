"""Provider webhook endpoints.

Bodies are plain text: the provider only needs to know whether to stop
redelivering (2xx/4xx) or try again later (5xx).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.api.deps import get_payout_provider
from app.api.errors import translate_error
from app.core.config import settings
from app.core.database import get_db
from app.core.logging import get_logger
from app.schemas.webhook import PAYOUT_CHANGED, SELLER_CHANGED
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.webhooks.pipeline import RejectReason, WebhookOutcome, WebhookPipeline

logger = get_logger(__name__)

router = APIRouter()

_BAD_REQUEST_REASONS = frozenset(
    {
        RejectReason.MALFORMED,
        RejectReason.TYPE_MISMATCH,
        RejectReason.TIMESTAMP,
        RejectReason.UNSUPPORTED_STATUS,
    }
)


async def _handle(
    request: Request,
    db: Session,
    provider: Optional[PayoutProvider],
    expected_type: str,
    label: str,
) -> PlainTextResponse:
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    try:
        result = WebhookPipeline(db, settings, provider=provider).handle(raw_body, signature, expected_type)
    except Exception as exc:
        status, body = translate_error(exc, request.url.path)
        return PlainTextResponse(
            f"Failed to process {label} webhook: {body.message}",
            status_code=status,
        )

    if result.outcome is WebhookOutcome.APPLIED:
        return PlainTextResponse(f"{label.capitalize()} status updated successfully")
    if result.outcome is WebhookOutcome.DUPLICATE:
        return PlainTextResponse("Event already processed (duplicate)", status_code=409)

    if result.reason == RejectReason.INVALID_SIGNATURE:
        return PlainTextResponse("Webhook signature verification failed", status_code=401)
    status_code = 400 if result.reason in _BAD_REQUEST_REASONS else 409
    return PlainTextResponse(f"Rejected: {result.reason}", status_code=status_code)


@router.post("/payout-changed", response_class=PlainTextResponse)
async def payout_changed(request: Request, db: Session = Depends(get_db)) -> PlainTextResponse:
    """Apply a ``payout.changed`` event to its settlement."""
    return await _handle(request, db, None, PAYOUT_CHANGED, "payout")


@router.post("/seller-changed", response_class=PlainTextResponse)
async def seller_changed(
    request: Request,
    db: Session = Depends(get_db),
    provider: PayoutProvider = Depends(get_payout_provider),
) -> PlainTextResponse:
    """Apply a ``seller.changed`` event and follow up on the store's settlements."""
    return await _handle(request, db, provider, SELLER_CHANGED, "seller")


@router.get("/health", response_class=PlainTextResponse)
def webhook_health() -> str:
    logger.debug("Webhook health check")
    return "Webhook endpoint is healthy"
