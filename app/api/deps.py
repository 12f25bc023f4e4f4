"""Shared FastAPI dependencies for collaborators."""

from __future__ import annotations

from typing import Callable, Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal, get_db
from app.services.collaborators.payout_provider import HttpPayoutProvider, PayoutProvider
from app.services.collaborators.store_lookup import SqlStoreLookup, StoreLookup


def get_store_lookup(db: Session = Depends(get_db)) -> StoreLookup:
    return SqlStoreLookup(db)


def get_payout_provider() -> Iterator[PayoutProvider]:
    provider = HttpPayoutProvider.from_settings(settings)
    try:
        yield provider
    finally:
        provider.close()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_provider_factory() -> Callable[[], PayoutProvider]:
    return lambda: HttpPayoutProvider.from_settings(settings)
