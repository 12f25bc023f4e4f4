"""Tests for the background retry job module.

These are pure unit tests with no database.  We mock the factories
and BackgroundTasks to verify job submission, listing, and lookup.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from app.services.retry import batch
from app.services.retry.coordinator import RetryPassResult


@pytest.fixture(autouse=True)
def _clear_jobs():
    """Reset the in-memory job tracker between tests."""
    batch._jobs.clear()
    yield
    batch._jobs.clear()


# ── Test: submit_retry_job ───────────────────────────────────────────


class TestSubmitJob:
    def test_submit_job_returns_job_id(self):
        bg = MagicMock()

        job_id = batch.submit_retry_job(MagicMock(), MagicMock(), bg)

        assert isinstance(job_id, str)
        assert len(job_id) == 36

        job = batch.get_job_status(job_id)
        assert job["status"] == "pending"
        assert job["attempted"] == []
        assert job["error"] is None

    def test_submit_job_schedules_background_task(self):
        bg = MagicMock()
        batch.submit_retry_job(MagicMock(), MagicMock(), bg)
        bg.add_task.assert_called_once()


# ── Test: _run_job ───────────────────────────────────────────────────


class TestRunJob:
    def test_successful_pass_records_outcome(self):
        job_id = batch.submit_retry_job(MagicMock(), MagicMock(), MagicMock())
        db = MagicMock()
        provider = MagicMock()

        with patch.object(batch, "RetryCoordinator") as coordinator_cls:
            coordinator_cls.return_value.run_once.return_value = RetryPassResult(
                attempted=["a", "b"], completed=["a"], failed=["b"]
            )
            batch._run_job(job_id, lambda: db, lambda: provider)

        job = batch.get_job_status(job_id)
        assert job["status"] == "completed"
        assert job["completed"] == ["a"]
        assert job["failed"] == ["b"]
        db.close.assert_called_once()
        provider.close.assert_called_once()

    def test_failure_marks_job_failed(self):
        job_id = batch.submit_retry_job(MagicMock(), MagicMock(), MagicMock())
        db = MagicMock()

        with patch.object(batch, "RetryCoordinator") as coordinator_cls:
            coordinator_cls.return_value.run_once.side_effect = RuntimeError("db down")
            batch._run_job(job_id, lambda: db, MagicMock)

        job = batch.get_job_status(job_id)
        assert job["status"] == "failed"
        assert job["error"] == "db down"
        db.close.assert_called_once()


# ── Test: list_jobs / get_job_status ─────────────────────────────────


class TestJobLookup:
    def test_list_jobs_empty(self):
        assert batch.list_jobs() == []

    def test_list_jobs_returns_all(self):
        id1 = batch.submit_retry_job(MagicMock(), MagicMock(), MagicMock())
        id2 = batch.submit_retry_job(MagicMock(), MagicMock(), MagicMock())
        assert {j["job_id"] for j in batch.list_jobs()} == {id1, id2}

    def test_get_job_not_found(self):
        assert batch.get_job_status("nonexistent-uuid") is None
