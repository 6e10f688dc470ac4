"""Checkpoint horizons and before/after window calculation.

Horizons: D+7, D+14, D+30, D+60, D+90
- D+7, D+14: early signals only (no status change)
- D+30: decision horizon (first canonical resolution)
- D+60, D+90: confirmation or reversal
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable

from changewatch.correlation.types import CorrelationWindows

HORIZONS: tuple[int, ...] = (7, 14, 30, 60, 90)
EARLY_HORIZONS: tuple[int, ...] = (7, 14)
DECISION_HORIZON = 30
REVERSAL_HORIZONS: tuple[int, ...] = (60, 90)

ONE_DAY = timedelta(days=1)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end (floored, may be negative)."""
    return (ensure_utc(end) - ensure_utc(start)) // ONE_DAY


def eligible_horizons(
    detected_at: datetime,
    now: datetime,
    existing_horizons: Iterable[int],
) -> list[int]:
    """
    Determine which horizons are due for a change.

    A horizon is due once the change is at least that many whole days old
    and no checkpoint exists for it yet. Several horizons can come due at
    once when evaluation was skipped for a while.

    Args:
        detected_at: When the change was first detected
        now: Evaluation time
        existing_horizons: Horizons that already have a checkpoint

    Returns:
        Due horizons in ascending order
    """
    age_days = days_between(detected_at, now)
    existing = set(existing_horizons)
    return [h for h in HORIZONS if age_days >= h and h not in existing]


def compute_windows(change_date: datetime, horizon_days: int) -> CorrelationWindows:
    """
    Compute before/after windows for a horizon.

    The before window ends at UTC midnight of the detection day so it lines up
    with daily analytics aggregation. The after window starts at the exact
    detection instant so same-day pre-change traffic is not counted as impact.
    Both windows span exactly ``horizon_days``.
    """
    change_date = ensure_utc(change_date)
    midnight = change_date.replace(hour=0, minute=0, second=0, microsecond=0)
    span = timedelta(days=horizon_days)

    return CorrelationWindows(
        before_start=midnight - span,
        before_end=midnight,
        after_start=change_date,
        after_end=change_date + span,
    )
