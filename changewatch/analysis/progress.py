"""Page-level progress composed from canonical change state.

The live composition reads ``detected_changes`` and is the source of truth.
The last persisted snapshot (embedded in the page's latest scan summary) is
only a fallback, used when live composition fails closed.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from changewatch.correlation.horizons import DECISION_HORIZON, ONE_DAY, ensure_utc
from changewatch.correlation.types import ChangeStatus, CorrelationMetrics
from changewatch.db.models import Analysis, DetectedChange, Page
from changewatch.notify.formatters import format_metric_friendly_text
from changewatch import metrics

logger = logging.getLogger(__name__)

PROGRESS_STATUSES = (ChangeStatus.WATCHING, ChangeStatus.VALIDATED, ChangeStatus.REGRESSED)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidatedItem(_CamelModel):
    """A change with a resolved outcome."""

    id: str
    element: str
    title: str
    metric: str
    change: str
    friendly_text: str
    status: Literal["validated", "regressed"]


class WatchingItem(_CamelModel):
    """A change still collecting data toward the decision horizon."""

    id: str
    element: str
    title: str
    days_of_data: int
    days_needed: int = DECISION_HORIZON
    first_detected_at: Optional[str] = None


class ComposedProgress(_CamelModel):
    """Counts and UI-ready items for one page."""

    validated: int = 0
    watching: int = 0
    validated_items: list[ValidatedItem] = []
    watching_items: list[WatchingItem] = []

    def to_snapshot(self) -> dict:
        """Serialise the way it is embedded in a scan summary."""
        return self.model_dump(by_alias=True)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def days_of_data(first_detected_at: Any, now: datetime) -> int:
    """Whole days since detection, clamped at 0; invalid timestamps give 0."""
    detected = _parse_timestamp(first_detected_at)
    if detected is None:
        return 0
    elapsed = (ensure_utc(now) - detected) / ONE_DAY
    if not math.isfinite(elapsed):
        return 0
    return max(0, math.floor(elapsed))


def _timestamp_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _status_of(change: Any) -> Optional[ChangeStatus]:
    try:
        return ChangeStatus(change.status)
    except ValueError:
        return None


def _load_metrics(change: Any) -> Optional[CorrelationMetrics]:
    try:
        return CorrelationMetrics.from_dict(change.correlation_metrics)
    except (KeyError, TypeError, ValueError):
        logger.warning("Unreadable correlation metrics on change %s", change.id)
        return None


def _sort_key(change: Any) -> datetime:
    return _parse_timestamp(change.first_detected_at) or datetime.min.replace(tzinfo=timezone.utc)


def compose_progress(changes: Iterable[Any], now: datetime) -> ComposedProgress:
    """
    Compose progress from a snapshot of a page's changes.

    Args:
        changes: Objects with id, element, status, first_detected_at and
            correlation_metrics (ORM rows or equivalents)
        now: Reference time for elapsed-day counts

    Returns:
        ComposedProgress, newest detections first
    """
    validated_items: list[ValidatedItem] = []
    watching_items: list[WatchingItem] = []

    relevant = [c for c in changes if _status_of(c) in PROGRESS_STATUSES]
    relevant.sort(key=_sort_key, reverse=True)

    for change in relevant:
        status = _status_of(change)
        if status in (ChangeStatus.VALIDATED, ChangeStatus.REGRESSED):
            detected = _parse_timestamp(change.first_detected_at) or ensure_utc(now)
            metric, delta, friendly_text = format_metric_friendly_text(
                _load_metrics(change),
                detected,
                now,
            )
            validated_items.append(
                ValidatedItem(
                    id=str(change.id),
                    element=change.element,
                    title=change.element,
                    metric=metric,
                    change=delta,
                    friendly_text=friendly_text,
                    status=status.value,
                )
            )
        else:
            detected = change.first_detected_at
            watching_items.append(
                WatchingItem(
                    id=str(change.id),
                    element=change.element,
                    title=change.element,
                    days_of_data=days_of_data(detected, now),
                    first_detected_at=_timestamp_text(detected),
                )
            )

    return ComposedProgress(
        validated=len(validated_items),
        watching=len(watching_items),
        validated_items=validated_items,
        watching_items=watching_items,
    )


async def compose_progress_from_db(
    db: AsyncSession,
    page_id: str,
    now: Optional[datetime] = None,
) -> Optional[ComposedProgress]:
    """
    Compose progress for a page from canonical ``detected_changes`` rows.

    Fails closed: on any data access error returns None so the caller falls
    back to the last persisted snapshot instead of showing a false all-clear.
    """
    now = now or datetime.now(timezone.utc)
    query = (
        select(DetectedChange)
        .where(
            DetectedChange.page_id == page_id,
            DetectedChange.status.in_([s.value for s in PROGRESS_STATUSES]),
        )
        .order_by(DetectedChange.first_detected_at.desc())
    )

    try:
        result = await db.execute(query)
        changes = list(result.scalars().all())
    except Exception as e:
        logger.error("Failed to load detected changes for page %s: %s", page_id, e, exc_info=True)
        metrics.record_progress_failure()
        return None

    return compose_progress(changes, now)


def get_last_canonical_progress(changes_summary: Optional[dict]) -> Optional[ComposedProgress]:
    """
    Read the progress snapshot saved in a scan's changes summary.

    Missing counts and lists default to zero/empty. Returns None when there
    is no summary, no progress entry, or the entry cannot be parsed.
    """
    if not changes_summary:
        return None

    progress = changes_summary.get("progress")
    if not isinstance(progress, dict):
        return None

    try:
        return ComposedProgress.model_validate(
            {
                "validated": progress.get("validated") or 0,
                "watching": progress.get("watching") or 0,
                "validatedItems": progress.get("validatedItems") or [],
                "watchingItems": progress.get("watchingItems") or [],
            }
        )
    except ValidationError as e:
        logger.warning("Ignoring malformed progress snapshot: %s", e)
        return None


async def load_last_canonical_progress(
    db: AsyncSession,
    page_id: str,
) -> Optional[ComposedProgress]:
    """Fetch the page's last scan summary and extract its progress snapshot."""
    page = await db.get(Page, page_id)
    if page is None or not page.last_scan_id:
        return None

    analysis = await db.get(Analysis, page.last_scan_id)
    if analysis is None:
        return None

    return get_last_canonical_progress(analysis.changes_summary)


async def get_page_progress(
    db: AsyncSession,
    page_id: str,
    now: Optional[datetime] = None,
) -> tuple[Optional[ComposedProgress], str]:
    """
    Progress for display: live composition, else the last saved snapshot.

    Returns:
        Tuple of (progress or None, source) where source is "canonical",
        "snapshot" or "none"
    """
    progress = await compose_progress_from_db(db, page_id, now)
    if progress is not None:
        return progress, "canonical"

    try:
        snapshot = await load_last_canonical_progress(db, page_id)
    except Exception as e:
        logger.error("Failed to load progress snapshot for page %s: %s", page_id, e, exc_info=True)
        return None, "none"

    if snapshot is None:
        return None, "none"
    return snapshot, "snapshot"
