"""Settlement endpoints.

Creation by the order-completion collaborator, operator actions (process,
cancel, cancel payout, retry pass) and read-only queries including the
provider balance and retry statistics.  Every handler routes failures
through ``error_response``.
"""

from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from app.api.deps import (
    get_payout_provider,
    get_provider_factory,
    get_session_factory,
    get_store_lookup,
)
from app.api.errors import error_response
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import not_found
from app.core.logging import get_logger
from app.models.settlement import SettlementStatus
from app.schemas.provider import ProviderBalance
from app.schemas.retry import RetryJobStatus, RetryJobSubmitted, RetryStatistics
from app.schemas.settlement import SettlementCreate, SettlementResponse, SettlementSummary
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.collaborators.store_lookup import StoreLookup
from app.services.retry import batch
from app.services.settlement.service import SettlementService

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=SettlementResponse, status_code=201)
def create_settlement(
    payload: SettlementCreate,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    """Create the settlement for a completed order (idempotent on order_id)."""
    try:
        settlement = SettlementService(db, store_lookup).create(
            payload.store_id,
            payload.order_id,
            payload.amount,
            payload.fee_rate,
        )
    except Exception as exc:
        return error_response(exc, request)
    return SettlementResponse.model_validate(settlement)


@router.get("", response_model=List[SettlementResponse])
def list_settlements(
    request: Request,
    status: Optional[SettlementStatus] = Query(None, description="Filter by status"),
    store_id: Optional[str] = Query(None, description="Filter by store"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        settlements = SettlementService(db, store_lookup).list_settlements(status, store_id, page, limit)
    except Exception as exc:
        return error_response(exc, request)
    return [SettlementResponse.model_validate(s) for s in settlements]


@router.get("/summary", response_model=SettlementSummary)
def settlement_summary(
    request: Request,
    store_id: Optional[str] = Query(None, description="Limit to one store"),
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        return SettlementService(db, store_lookup).summary(store_id)
    except Exception as exc:
        return error_response(exc, request)


@router.post("/retry", response_model=RetryJobSubmitted, status_code=202)
def trigger_retry_pass(
    background_tasks: BackgroundTasks,
    db_factory: Callable = Depends(get_session_factory),
    provider_factory: Callable = Depends(get_provider_factory),
) -> RetryJobSubmitted:
    """Schedule a retry pass over FAILED settlements."""
    job_id = batch.submit_retry_job(db_factory, provider_factory, background_tasks)
    logger.info("Retry pass scheduled: job_id=%s", job_id)
    return RetryJobSubmitted(job_id=job_id)


@router.get("/retry/jobs/{job_id}", response_model=RetryJobStatus)
def retry_job_status(job_id: str, request: Request):
    job = batch.get_job_status(job_id)
    if job is None:
        return error_response(not_found("Retry job", job_id), request)
    return RetryJobStatus(**job)


@router.get("/balance", response_model=ProviderBalance)
def provider_balance(
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
    provider: PayoutProvider = Depends(get_payout_provider),
):
    """Funds available at the payout provider. Not cached."""
    try:
        return SettlementService(db, store_lookup, provider).provider_balance()
    except Exception as exc:
        return error_response(exc, request)


@router.get("/retry/statistics", response_model=RetryStatistics)
def retry_statistics(
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        return SettlementService(db, store_lookup).retry_statistics(settings.retry_max_attempts)
    except Exception as exc:
        return error_response(exc, request)


@router.get("/{settlement_id}", response_model=SettlementResponse)
def get_settlement(
    settlement_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        settlement = SettlementService(db, store_lookup).get(settlement_id)
    except Exception as exc:
        return error_response(exc, request)
    return SettlementResponse.model_validate(settlement)


@router.post("/{settlement_id}/process", response_model=SettlementResponse)
def process_settlement(
    settlement_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
    provider: PayoutProvider = Depends(get_payout_provider),
):
    """Submit a PENDING settlement to the payout provider."""
    try:
        settlement = SettlementService(db, store_lookup, provider).submit_payout(settlement_id)
    except Exception as exc:
        return error_response(exc, request)
    return SettlementResponse.model_validate(settlement)


@router.post("/{settlement_id}/cancel", response_model=SettlementResponse)
def cancel_settlement(
    settlement_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        settlement = SettlementService(db, store_lookup).cancel(settlement_id)
    except Exception as exc:
        return error_response(exc, request)
    return SettlementResponse.model_validate(settlement)


@router.post("/{settlement_id}/cancel-payout", response_model=SettlementResponse)
def cancel_payout(
    settlement_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
    provider: PayoutProvider = Depends(get_payout_provider),
):
    """Cancel a PROCESSING settlement's payout at the provider."""
    try:
        settlement = SettlementService(db, store_lookup, provider).cancel_payout(settlement_id)
    except Exception as exc:
        return error_response(exc, request)
    return SettlementResponse.model_validate(settlement)
