"""Exponential backoff schedule for settlement retries."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional


def backoff_delay(
    retry_count: int,
    base: float = 1.0,
    multiplier: float = 2.0,
    cap: float = 10.0,
) -> float:
    """Delay (in units) to wait after the ``retry_count``-th failure.

    1, 2, 4, 8, 10, 10, ... with the defaults.
    """
    if retry_count <= 0:
        return 0.0
    return min(base * multiplier ** (retry_count - 1), cap)


def next_attempt_at(
    last_failure: Optional[datetime],
    retry_count: int,
    unit_seconds: float,
    base: float = 1.0,
    multiplier: float = 2.0,
    cap: float = 10.0,
) -> Optional[datetime]:
    if last_failure is None:
        return None
    delay = backoff_delay(retry_count, base, multiplier, cap)
    return last_failure + timedelta(seconds=delay * unit_seconds)


def is_due(
    now: datetime,
    last_failure: Optional[datetime],
    retry_count: int,
    unit_seconds: float,
    base: float = 1.0,
    multiplier: float = 2.0,
    cap: float = 10.0,
) -> bool:
    due_at = next_attempt_at(last_failure, retry_count, unit_seconds, base, multiplier, cap)
    return due_at is None or now >= due_at
