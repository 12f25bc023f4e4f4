"""Schemas for retry passes and their background jobs."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RetryJobSubmitted(BaseModel):
    job_id: str
    status: str = "pending"


class RetryJobStatus(BaseModel):
    job_id: str
    status: str = Field(..., description="pending | running | completed | failed")
    attempted: list[str] = Field(default_factory=list)
    completed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    manual_action: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    errored: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class RetryStatistics(BaseModel):
    failed_count: int = Field(..., description="Settlements currently FAILED")
    retryable_count: int = Field(..., description="FAILED with attempts left and no manual flag")
    exhausted_count: int = Field(..., description="FAILED with every attempt used")
    manual_action_count: int
    recovered_count: int = Field(..., description="COMPLETED after at least one failed attempt")
    recorded_failures: int = Field(..., description="Sum of retry_count over all settlements")
    max_attempts: int
