"""Background retry jobs.

Allows triggering a retry pass as a background task and tracking its
progress.  Uses an in-memory dict for job tracking, so job history is per
process and lost on restart.
"""

from __future__ import annotations

import uuid

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.services.collaborators.store_lookup import SqlStoreLookup
from app.services.retry.coordinator import RetryCoordinator

logger = get_logger(__name__)

# In-memory job tracker
_jobs: dict[str, dict] = {}


def submit_retry_job(
    db_factory,  # callable that creates a new session
    provider_factory,  # callable that creates a PayoutProvider
    background_tasks: BackgroundTasks,
) -> str:
    """Schedule a retry pass in the background.

    Returns job_id immediately so the caller can poll for status later.
    """
    job_id = str(uuid.uuid4())
    _jobs[job_id] = {
        "job_id": job_id,
        "status": "pending",
        "attempted": [],
        "completed": [],
        "failed": [],
        "manual_action": [],
        "skipped": [],
        "errored": [],
        "error": None,
    }
    background_tasks.add_task(_run_job, job_id, db_factory, provider_factory)
    return job_id


def _run_job(job_id: str, db_factory, provider_factory) -> None:
    """Background task that runs one retry pass with its own session."""
    _jobs[job_id]["status"] = "running"
    try:
        db: Session = db_factory()
        provider = provider_factory()
        try:
            coordinator = RetryCoordinator(db, provider, SqlStoreLookup(db), settings)
            result = coordinator.run_once()
            _jobs[job_id].update(result.as_dict())
            _jobs[job_id]["status"] = "completed"
        finally:
            db.close()
            close = getattr(provider, "close", None)
            if close is not None:
                close()
    except Exception as e:
        logger.exception("Retry job %s failed", job_id)
        _jobs[job_id]["status"] = "failed"
        _jobs[job_id]["error"] = str(e)


def get_job_status(job_id: str) -> dict | None:
    """Look up a job by ID.  Returns None if not found."""
    return _jobs.get(job_id)


def list_jobs() -> list[dict]:
    """Return all tracked jobs (oldest first by insertion order)."""
    return list(_jobs.values())
