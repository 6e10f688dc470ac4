"""Stable baseline selection for lightweight deploy diffing.

The stable baseline is the comparison snapshot for quick visual diffs. It
should be a recent, complete scheduled scan that represents the known-good
state of the page. Without one the caller runs a full analysis instead.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from changewatch.config import settings
from changewatch.correlation.horizons import ensure_utc
from changewatch.db.models import Analysis, Page

logger = logging.getLogger(__name__)

SCHEDULED_TRIGGERS = ("daily", "weekly")
MIN_FALLBACK_AGE = timedelta(hours=24)


@dataclass
class StableBaseline:
    """Snapshot used as the before-image for a quick diff."""

    id: str
    screenshot_url: str
    mobile_screenshot_url: Optional[str]
    created_at: datetime
    trigger_type: str

    @classmethod
    def from_analysis(cls, analysis: Analysis, default_trigger: Optional[str] = None) -> "StableBaseline":
        return cls(
            id=analysis.id,
            screenshot_url=analysis.screenshot_url,
            mobile_screenshot_url=analysis.mobile_screenshot_url,
            created_at=ensure_utc(analysis.created_at),
            trigger_type=analysis.trigger_type or default_trigger,
        )


def _usable(analysis: Optional[Analysis]) -> bool:
    return (
        analysis is not None
        and analysis.status == "complete"
        and bool(analysis.screenshot_url)
    )


async def get_stable_baseline(
    db: AsyncSession,
    page_id: str,
    now: Optional[datetime] = None,
) -> Optional[StableBaseline]:
    """
    Get the stable baseline for a page.

    Priority order:
    1. The page's pinned baseline, if complete with a screenshot
    2. Latest complete daily/weekly scan with a screenshot
    3. Latest complete scan with a screenshot at least 24h old
    4. None (first scan, no baseline available)

    Args:
        db: Database session
        page_id: Page to find a baseline for
        now: Reference time for the 24h age rule

    Returns:
        StableBaseline or None
    """
    now = ensure_utc(now or datetime.now(timezone.utc))

    page = await db.get(Page, page_id)
    if page is None:
        return None

    if page.stable_baseline_id:
        pinned = await db.get(Analysis, page.stable_baseline_id)
        if _usable(pinned):
            return StableBaseline.from_analysis(pinned)
        logger.debug(
            "Pinned baseline %s for page %s is not usable, falling back",
            page.stable_baseline_id,
            page_id,
        )

    same_page = select(Analysis).where(
        Analysis.url == page.url,
        Analysis.user_id == page.user_id,
        Analysis.status == "complete",
        Analysis.screenshot_url.is_not(None),
    )

    result = await db.execute(
        same_page.where(Analysis.trigger_type.in_(SCHEDULED_TRIGGERS))
        .order_by(Analysis.created_at.desc())
        .limit(1)
    )
    scheduled = result.scalars().first()
    if _usable(scheduled):
        return StableBaseline.from_analysis(scheduled)

    result = await db.execute(
        same_page.where(Analysis.created_at <= now - MIN_FALLBACK_AGE)
        .order_by(Analysis.created_at.desc())
        .limit(1)
    )
    older = result.scalars().first()
    if _usable(older):
        return StableBaseline.from_analysis(older, default_trigger="manual")

    return None


def is_baseline_stale(
    baseline: Optional[StableBaseline],
    max_age_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Check if a baseline is too old to diff against.

    Stale (or missing) baselines should trigger a full analysis instead of
    a quick diff.
    """
    if baseline is None:
        return True

    if max_age_days is None:
        max_age_days = settings.baseline_max_age_days
    now = ensure_utc(now or datetime.now(timezone.utc))
    return now - ensure_utc(baseline.created_at) > timedelta(days=max_age_days)
