"""SQLAlchemy models for the settlement service."""

from app.models.seller import Seller
from app.models.settlement import Settlement
from app.models.store import Store
from app.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Seller",
    "Settlement",
    "Store",
    "ProcessedWebhookEvent",
]
