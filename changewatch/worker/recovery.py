"""Watchdog task that re-triggers analyses the primary scheduler missed."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from changewatch.correlation.horizons import ensure_utc
from changewatch.db.models import Analysis
from changewatch.db.session import AsyncSessionLocal
from changewatch import metrics

logger = logging.getLogger(__name__)

# Protocol constants: every trigger must derive the same window
LOOKBACK = timedelta(hours=48)
STALE_AFTER = timedelta(hours=2)
RECOVERABLE_TRIGGERS = ("daily", "weekly")

Retrigger = Callable[[Analysis], Awaitable[None]]


@dataclass(frozen=True)
class RecoveryWindow:
    """Creation-time range of pending analyses considered stuck."""

    lookback_start: datetime
    stale_threshold: datetime

    def contains(self, created_at: datetime) -> bool:
        """Inclusive on both ends."""
        return self.lookback_start <= ensure_utc(created_at) <= self.stale_threshold


def recovery_window(now: datetime) -> RecoveryWindow:
    """
    Window for re-triggering stuck analyses.

    Old enough to be stuck (pending for at least 2h) but recent enough not
    to be stale garbage (created within the last 48h).
    """
    now = ensure_utc(now)
    return RecoveryWindow(lookback_start=now - LOOKBACK, stale_threshold=now - STALE_AFTER)


async def find_stale_analyses(db: AsyncSession, now: datetime) -> list[Analysis]:
    """Pending daily/weekly analyses created inside the recovery window."""
    window = recovery_window(now)
    query = (
        select(Analysis)
        .where(
            Analysis.status == "pending",
            Analysis.trigger_type.in_(RECOVERABLE_TRIGGERS),
            Analysis.created_at >= window.lookback_start,
            Analysis.created_at <= window.stale_threshold,
        )
        .order_by(Analysis.created_at.asc())
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def recover_stale_analyses(
    retrigger: Retrigger,
    now: Optional[datetime] = None,
    session_factory=AsyncSessionLocal,
    reason_prefix: str = "Recovery",
) -> int:
    """
    Re-trigger evaluation for analyses stuck in ``pending``.

    Safe to run any number of times: each run re-derives the same window, and
    an analysis that has left ``pending`` no longer matches.

    Args:
        retrigger: Coroutine that re-submits one analysis for processing
        now: Reference time (defaults to current UTC time)
        session_factory: Async session factory
        reason_prefix: Log prefix identifying the calling trigger

    Returns:
        Number of analyses successfully re-triggered
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    recovered = 0

    try:
        async with session_factory() as db:
            stale = await find_stale_analyses(db, now)
    except Exception as e:
        logger.error(f"{reason_prefix}: failed to query stale analyses: {e}", exc_info=True)
        return 0

    if not stale:
        logger.debug("%s: no stale analyses", reason_prefix)
        return 0

    logger.warning(
        "%s: %d pending analyses stuck for more than %s, re-triggering",
        reason_prefix,
        len(stale),
        STALE_AFTER,
    )

    for analysis in stale:
        try:
            await retrigger(analysis)
            recovered += 1
            metrics.record_analysis_retriggered(analysis.trigger_type, success=True)
        except Exception as e:
            metrics.record_analysis_retriggered(analysis.trigger_type, success=False)
            logger.error(
                f"{reason_prefix}: failed to re-trigger analysis {analysis.id}: {e}",
                exc_info=True,
            )

    logger.info("%s: re-triggered %d/%d analyses", reason_prefix, recovered, len(stale))
    return recovered
