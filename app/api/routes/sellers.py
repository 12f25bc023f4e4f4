"""Seller onboarding endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_payout_provider, get_store_lookup
from app.api.errors import error_response
from app.core.database import get_db
from app.schemas.seller import (
    ProviderRegistration,
    SellerRegister,
    SellerResponse,
    SellerStatusUpdate,
)
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.collaborators.store_lookup import StoreLookup
from app.services.onboarding.service import SellerService

router = APIRouter()


@router.post("", response_model=SellerResponse, status_code=201)
def register_seller(
    payload: SellerRegister,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        seller = SellerService(db, store_lookup).register(payload.store_id, payload.business_type)
    except Exception as exc:
        return error_response(exc, request)
    return SellerResponse.from_seller(seller)


@router.get("/{store_id}", response_model=SellerResponse)
def get_seller(
    store_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
):
    try:
        seller = SellerService(db, store_lookup).get_by_store(store_id)
    except Exception as exc:
        return error_response(exc, request)
    return SellerResponse.from_seller(seller)


@router.post("/{store_id}/provider-registration", response_model=SellerResponse)
def register_with_provider(
    store_id: str,
    payload: ProviderRegistration,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
    provider: PayoutProvider = Depends(get_payout_provider),
):
    """Register the store's seller with the payout provider."""
    try:
        seller = SellerService(db, store_lookup, provider).register_with_provider(store_id, payload.details)
    except Exception as exc:
        return error_response(exc, request)
    return SellerResponse.from_seller(seller)


@router.patch("/{store_id}/status", response_model=SellerResponse)
def update_seller_status(
    store_id: str,
    payload: SellerStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    store_lookup: StoreLookup = Depends(get_store_lookup),
    provider: PayoutProvider = Depends(get_payout_provider),
):
    """Change onboarding status; PENDING settlements are submitted or failed to match."""
    try:
        seller = SellerService(db, store_lookup, provider).update_status(store_id, payload.status)
    except Exception as exc:
        return error_response(exc, request)
    return SellerResponse.from_seller(seller)
