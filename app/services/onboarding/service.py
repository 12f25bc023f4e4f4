"""Seller onboarding service: registration, provider id and approval status."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import not_found, processing_error, validation_error
from app.core.logging import get_logger
from app.models.seller import BusinessType, Seller, SellerStatus
from app.services.collaborators.payout_provider import PayoutProvider
from app.services.collaborators.store_lookup import StoreLookup
from app.services.persistence import commit_transition
from app.services.settlement.service import SettlementService

logger = get_logger(__name__)


class SellerService:
    """Operations on Seller onboarding records for one database session."""

    def __init__(
        self,
        db: Session,
        store_lookup: StoreLookup,
        provider: Optional[PayoutProvider] = None,
    ) -> None:
        self.db = db
        self.store_lookup = store_lookup
        self.provider = provider

    def register(self, store_id: str, business_type: BusinessType) -> Seller:
        """Start onboarding for a store. A store may be registered only once."""
        if self.find_by_store(store_id) is not None:
            raise validation_error(
                f"Seller already registered for store {store_id}",
                field_errors={"store_id": ["already has a seller registration"]},
            )
        if not self.store_lookup.exists(store_id):
            raise not_found("Store", store_id)

        seller = Seller.build(store_id, business_type)
        self.db.add(seller)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise validation_error(
                f"Seller already registered for store {store_id}",
                field_errors={"store_id": ["already has a seller registration"]},
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to register seller for store=%s", store_id)
            raise processing_error(
                f"Could not register seller for store {store_id}",
                stage="database_save",
            ) from exc

        logger.info(
            "Seller registered: store=%s business_type=%s",
            store_id,
            seller.business_type.value,
        )
        return seller

    def find_by_store(self, store_id: str) -> Optional[Seller]:
        return self.db.query(Seller).filter(Seller.store_id == store_id).first()

    def find_by_ref(self, ref_seller_id: str) -> Optional[Seller]:
        return self.db.query(Seller).filter(Seller.ref_seller_id == ref_seller_id).first()

    def get_by_store(self, store_id: str) -> Seller:
        seller = self.find_by_store(store_id)
        if seller is None:
            raise not_found("Seller", store_id)
        return seller

    def assign_provider_id(self, store_id: str, provider_seller_id: str) -> Seller:
        seller = self.get_by_store(store_id)
        if seller.assign_provider_id(provider_seller_id):
            commit_transition(self.db, seller, "assign provider id")
            logger.info(
                "Provider seller id assigned: store=%s provider_seller_id=%s",
                store_id,
                provider_seller_id,
            )
        return seller

    def update_status(self, store_id: str, new_status: SellerStatus) -> Seller:
        """Move the seller to ``new_status`` and follow up on its settlements."""
        seller = self.get_by_store(store_id)
        previous = seller.status
        if not seller.update_status(new_status):
            return seller
        commit_transition(self.db, seller, f"move to {new_status.value}", new_status)
        logger.info(
            "Seller status changed: store=%s %s -> %s",
            store_id,
            previous.value,
            new_status.value,
        )
        SettlementService(self.db, self.store_lookup, self.provider).handle_seller_status_change(
            store_id, previous, seller.status
        )
        return seller

    def register_with_provider(self, store_id: str, details: dict[str, Any]) -> Seller:
        """Register the store's seller with the provider and keep its id."""
        seller = self.get_by_store(store_id)
        if seller.is_registered:
            return seller
        if self.provider is None:
            raise processing_error(
                "No payout provider configured",
                stage="external_api_call",
                retryable=False,
            )

        payload = {
            "refSellerId": seller.ref_seller_id,
            "businessType": seller.business_type.value,
            **details,
        }
        provider_seller_id = self.provider.register_seller(payload)
        return self.assign_provider_id(store_id, provider_seller_id)
