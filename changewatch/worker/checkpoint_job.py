"""Scheduled checkpoint evaluation job.

Each run finds every change with a due horizon (D+7, D+14, D+30, D+60,
D+90), compares before/after metrics for that horizon, writes one immutable
checkpoint row per horizon, and applies status transitions.

Re-running is always safe: checkpoints are inserted with ON CONFLICT DO
NOTHING on (change_id, horizon_days) and status updates are compare-and-swap
on the status read after the insert.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from changewatch.analytics.provider import AnalyticsProvider, correlate_change
from changewatch.config import settings
from changewatch.correlation.assessment import assess_checkpoint, describe_fallback
from changewatch.correlation.horizons import (
    REVERSAL_HORIZONS,
    compute_windows,
    eligible_horizons,
    ensure_utc,
)
from changewatch.correlation.transitions import resolve_status_transition
from changewatch.correlation.types import (
    ChangeStatus,
    CheckpointAssessment,
    CorrelationMetrics,
    MetricAssessment,
    MetricDelta,
    PriorCheckpoint,
    StatusTransition,
)
from changewatch.db.models import ChangeCheckpoint, ChangeLifecycleEvent, DetectedChange, Page
from changewatch.db.session import AsyncSessionLocal
from changewatch.logging_config import get_logger
from changewatch.notify.formatters import format_checkpoint_observation
from changewatch import metrics

logger = logging.getLogger(__name__)

# Statuses that can still receive checkpoints
ACTIVE_STATUSES = (
    ChangeStatus.WATCHING,
    ChangeStatus.VALIDATED,
    ChangeStatus.REGRESSED,
    ChangeStatus.INCONCLUSIVE,
)

ProviderFactory = Callable[[str], Awaitable[Optional[AnalyticsProvider]]]


@dataclass
class DueChange:
    """A change together with the horizons that are due for it."""

    change: Any
    page_url: str
    due_horizons: list[int]
    prior: list[PriorCheckpoint] = field(default_factory=list)


@dataclass
class CheckpointResult:
    """Assessment of one horizon, ready to persist."""

    correlation: CorrelationMetrics
    assessment: CheckpointAssessment
    reasoning: str
    confidence: float


@dataclass
class ValidatedNotice:
    """A change whose final status in this run is ``validated``."""

    change_id: str
    user_id: str
    element: str
    observation: str


@dataclass
class CheckpointRunSummary:
    """Counters for one evaluation run."""

    changes_due: int = 0
    checkpoints_written: int = 0
    transitions_applied: int = 0
    conflicts: int = 0
    stuck_watching: int = 0
    errors: int = 0
    validated: list[ValidatedNotice] = field(default_factory=list)


def plan_due_checkpoints(
    changes: Iterable[tuple[Any, str]],
    existing_by_change: dict[str, list[PriorCheckpoint]],
    now: datetime,
) -> list[DueChange]:
    """
    Pair each change with its due horizons.

    Args:
        changes: (change, page_url) pairs
        existing_by_change: Already-computed checkpoints keyed by change id
        now: Evaluation time

    Returns:
        DueChange entries, only for changes with at least one due horizon
    """
    due: list[DueChange] = []
    for change, page_url in changes:
        prior = existing_by_change.get(change.id, [])
        horizons = eligible_horizons(
            change.first_detected_at, now, [cp.horizon_days for cp in prior]
        )
        if horizons:
            due.append(DueChange(change=change, page_url=page_url, due_horizons=horizons, prior=list(prior)))
    return due


def build_checkpoint_result(
    deltas: list[MetricDelta],
    reason: Optional[str] = None,
) -> CheckpointResult:
    """Assess deltas and package them with reasoning and confidence."""
    assessment = assess_checkpoint(deltas)
    reasoning, confidence = describe_fallback(deltas, assessment)
    correlation = CorrelationMetrics(
        metrics=list(deltas),
        overall_assessment=assessment,
        reason=reason,
    )
    return CheckpointResult(
        correlation=correlation,
        assessment=assessment,
        reasoning=reasoning,
        confidence=confidence,
    )


def headline_metric(deltas: list[MetricDelta]) -> Optional[MetricDelta]:
    """First metric that moved (improved or regressed), if any."""
    for delta in deltas:
        if delta.assessment != MetricAssessment.NEUTRAL:
            return delta
    return None


class CheckpointJob:
    """
    Evaluates due checkpoints for all active changes.

    Analytics access goes through ``provider_factory``, called once per user.
    Without a factory (or when it fails) checkpoints are still written, as
    inconclusive with reason ``analytics_disconnected``.
    """

    def __init__(
        self,
        provider_factory: Optional[ProviderFactory] = None,
        session_factory=AsyncSessionLocal,
        page_size: Optional[int] = None,
        id_batch_size: Optional[int] = None,
        threshold: Optional[float] = None,
    ):
        self.provider_factory = provider_factory
        self.session_factory = session_factory
        self.page_size = page_size or settings.checkpoint_page_size
        self.id_batch_size = id_batch_size or settings.checkpoint_id_batch_size
        self.threshold = threshold if threshold is not None else settings.significance_threshold_percent

    async def run(self, now: Optional[datetime] = None) -> CheckpointRunSummary:
        """
        Run one evaluation pass.

        Returns:
            CheckpointRunSummary with counts and newly validated changes
        """
        now = ensure_utc(now or datetime.now(timezone.utc))
        summary = CheckpointRunSummary()

        with metrics.checkpoint_run_duration_seconds.time():
            async with self.session_factory() as db:
                candidates = await self._load_candidates(db)
                existing = await self._load_existing(db, [c.id for c, _ in candidates])

            due = plan_due_checkpoints(candidates, existing, now)
            summary.changes_due = len(due)

            if not due:
                logger.info("Checkpoint run: no checkpoints due")
                return summary

            by_user: dict[str, list[DueChange]] = {}
            for item in due:
                by_user.setdefault(item.change.user_id, []).append(item)

            for user_id, items in by_user.items():
                await self._process_user(user_id, items, summary, now)

        logger.info(
            "Checkpoint run complete: %d changes due, %d checkpoints, %d transitions, "
            "%d conflicts, %d stuck in watching, %d errors",
            summary.changes_due,
            summary.checkpoints_written,
            summary.transitions_applied,
            summary.conflicts,
            summary.stuck_watching,
            summary.errors,
        )
        return summary

    async def _load_candidates(self, db: AsyncSession) -> list[tuple[DetectedChange, str]]:
        """Load all active changes with their page URL, page by page."""
        candidates: list[tuple[DetectedChange, str]] = []
        offset = 0

        while True:
            query = (
                select(DetectedChange, Page.url)
                .join(Page, DetectedChange.page_id == Page.id)
                .where(DetectedChange.status.in_([s.value for s in ACTIVE_STATUSES]))
                .order_by(DetectedChange.id)
                .offset(offset)
                .limit(self.page_size)
            )
            result = await db.execute(query)
            batch = [(row[0], row[1]) for row in result.all()]
            candidates.extend(batch)

            if len(batch) < self.page_size:
                break
            offset += self.page_size

        return candidates

    async def _load_existing(
        self,
        db: AsyncSession,
        change_ids: list[str],
    ) -> dict[str, list[PriorCheckpoint]]:
        """Existing checkpoints keyed by change id, queried in id batches."""
        existing: dict[str, list[PriorCheckpoint]] = {}

        for i in range(0, len(change_ids), self.id_batch_size):
            id_batch = change_ids[i:i + self.id_batch_size]
            result = await db.execute(
                select(
                    ChangeCheckpoint.change_id,
                    ChangeCheckpoint.horizon_days,
                    ChangeCheckpoint.assessment,
                ).where(ChangeCheckpoint.change_id.in_(id_batch))
            )
            for change_id, horizon_days, assessment in result.all():
                existing.setdefault(change_id, []).append(
                    PriorCheckpoint(horizon_days, CheckpointAssessment(assessment))
                )

        return existing

    async def _resolve_provider(self, user_id: str) -> Optional[AnalyticsProvider]:
        if self.provider_factory is None:
            return None
        try:
            return await self.provider_factory(user_id)
        except Exception as e:
            # A bad token must not block checkpoints; they become inconclusive
            logger.error(f"Failed to init analytics provider for user {user_id}: {e}", exc_info=True)
            metrics.record_checkpoint_error("provider")
            return None

    async def _process_user(
        self,
        user_id: str,
        items: list[DueChange],
        summary: CheckpointRunSummary,
        now: datetime,
    ):
        provider = await self._resolve_provider(user_id)
        # Only the final status of a change in this run is notified
        validated_by_change: dict[str, ValidatedNotice] = {}

        try:
            for item in items:
                try:
                    async with self.session_factory() as db:
                        await self._process_change(db, item, provider, summary, validated_by_change, now)
                except Exception as e:
                    summary.errors += 1
                    metrics.record_checkpoint_error("persist")
                    logger.error(
                        f"Checkpoint evaluation failed for change {item.change.id}: {e}",
                        exc_info=True,
                    )
        finally:
            if provider is not None:
                await provider.close()

        summary.validated.extend(validated_by_change.values())

    async def _process_change(
        self,
        db: AsyncSession,
        item: DueChange,
        provider: Optional[AnalyticsProvider],
        summary: CheckpointRunSummary,
        validated_by_change: dict[str, ValidatedNotice],
        now: datetime,
    ):
        change = item.change
        prior = list(item.prior)

        for horizon_days in item.due_horizons:
            log = get_logger(__name__, change_id=change.id, horizon_days=horizon_days)
            windows = compute_windows(change.first_detected_at, horizon_days)

            if provider is not None:
                deltas = await correlate_change(provider, item.page_url, windows, threshold=self.threshold)
                result = build_checkpoint_result(deltas)
                provider_name = provider.name
            else:
                result = build_checkpoint_result([], reason="analytics_disconnected")
                provider_name = "none"

            insert_stmt = (
                pg_insert(ChangeCheckpoint)
                .values(
                    change_id=change.id,
                    horizon_days=horizon_days,
                    window_before_start=windows.before_start,
                    window_before_end=windows.before_end,
                    window_after_start=windows.after_start,
                    window_after_end=windows.after_end,
                    metrics_json=result.correlation.to_dict(),
                    assessment=result.assessment.value,
                    confidence=result.confidence,
                    reasoning=result.reasoning,
                    provider=provider_name,
                    computed_at=now,
                )
                .on_conflict_do_nothing(index_elements=["change_id", "horizon_days"])
                .returning(ChangeCheckpoint.id)
            )
            checkpoint_id = (await db.execute(insert_stmt)).scalar_one_or_none()

            if checkpoint_id is None:
                # Another worker already wrote this horizon and owns its transition
                log.info("Checkpoint D+%d already exists, skipping", horizon_days)
                prior.append(PriorCheckpoint(horizon_days, result.assessment))
                continue

            summary.checkpoints_written += 1
            metrics.record_checkpoint_written(horizon_days, result.assessment.value)

            current_status = (
                await db.execute(select(DetectedChange.status).where(DetectedChange.id == change.id))
            ).scalar_one()

            transition = resolve_status_transition(current_status, horizon_days, result.assessment, prior)
            prior.append(PriorCheckpoint(horizon_days, result.assessment))

            if transition is None:
                if current_status == ChangeStatus.WATCHING.value and horizon_days in REVERSAL_HORIZONS:
                    summary.stuck_watching += 1
                    log.warning("Change still watching at D+%d; decision horizon never resolved it", horizon_days)
                await db.commit()
                continue

            applied = await self._apply_transition(
                db, change, current_status, transition, result, checkpoint_id, horizon_days, now
            )
            if not applied:
                summary.conflicts += 1
                metrics.record_transition_conflict()
                log.warning(
                    "Skipped status transition for change %s: status changed concurrently",
                    change.id,
                )
                continue

            summary.transitions_applied += 1
            metrics.record_status_transition(current_status, transition.new_status.value)
            log.info("Change %s: %s -> %s (%s)", change.id, current_status, transition.new_status.value, transition.reason)

            if transition.new_status == ChangeStatus.VALIDATED:
                validated_by_change[change.id] = ValidatedNotice(
                    change_id=change.id,
                    user_id=change.user_id,
                    element=change.element,
                    observation=self._observation(change, horizon_days, result),
                )
            else:
                validated_by_change.pop(change.id, None)

    async def _apply_transition(
        self,
        db: AsyncSession,
        change: DetectedChange,
        current_status: str,
        transition: StatusTransition,
        result: CheckpointResult,
        checkpoint_id: int,
        horizon_days: int,
        now: datetime,
    ) -> bool:
        """
        Compare-and-swap the status and record the lifecycle event.

        The status update and its lifecycle event commit together. Returns
        False (checkpoint still committed) when the status moved underneath us.
        """
        update_result = await db.execute(
            update(DetectedChange)
            .where(
                DetectedChange.id == change.id,
                DetectedChange.status == current_status,
            )
            .values(
                status=transition.new_status.value,
                correlation_metrics=result.correlation.to_dict(),
                correlation_unlocked_at=now,
                updated_at=now,
                observation_text=func.coalesce(
                    DetectedChange.observation_text,
                    self._observation(change, horizon_days, result),
                ),
            )
        )

        if update_result.rowcount == 0:
            await db.commit()
            return False

        db.add(
            ChangeLifecycleEvent(
                change_id=change.id,
                from_status=current_status,
                to_status=transition.new_status.value,
                reason=transition.reason,
                actor_type="system",
                checkpoint_id=checkpoint_id,
                created_at=now,
            )
        )
        await db.commit()
        return True

    @staticmethod
    def _observation(change: DetectedChange, horizon_days: int, result: CheckpointResult) -> str:
        return format_checkpoint_observation(
            change.element,
            change.first_detected_at,
            horizon_days,
            headline_metric(result.correlation.metrics),
            result.assessment,
        )
