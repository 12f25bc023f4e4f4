"""Store lookup: the only view this service has of merchant stores."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.orm import Session

from app.models.store import Store


class StoreLookup(Protocol):
    def exists(self, store_id: str) -> bool: ...


class SqlStoreLookup:
    """Reads the ``stores`` identity table on demand."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def exists(self, store_id: str) -> bool:
        return self.db.get(Store, store_id) is not None
