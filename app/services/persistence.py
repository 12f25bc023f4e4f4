"""Commit helper for version-checked state transitions."""

from __future__ import annotations

import enum
from typing import Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import processing_error, status_conflict
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def commit_transition(
    db: Session,
    record: T,
    action: str,
    intended: Optional[enum.Enum] = None,
) -> T:
    """Commit a transition applied to ``record`` in memory.

    If another writer bumped the record's version first, the session is
    rolled back and the record reloaded.  When the winner already left the
    record in ``intended`` state the call is a no-op; otherwise the loser
    gets a STATUS_CONFLICT.  Any other database failure is a retryable
    PROCESSING error at the ``database_save`` stage.
    """
    model = type(record)
    record_id = record.id
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        current = db.get(model, record_id, populate_existing=True)
        current_status = getattr(current, "status", None)
        if intended is not None and current_status is intended:
            logger.info(
                "Concurrent %s already applied: %s id=%s status=%s",
                action,
                model.__name__,
                record_id,
                current_status.value,
            )
            return current
        logger.warning(
            "Lost concurrent update: %s id=%s action=%s current=%s",
            model.__name__,
            record_id,
            action,
            current_status,
        )
        raise status_conflict(
            record_id,
            current_status.value if current_status is not None else "UNKNOWN",
            action,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to persist %s for %s id=%s", action, model.__name__, record_id)
        raise processing_error(
            f"Failed to persist {action}",
            stage="database_save",
            entity_id=record_id,
        ) from exc
    return record
