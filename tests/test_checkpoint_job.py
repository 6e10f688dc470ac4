"""Tests for the checkpoint evaluation job."""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from changewatch import metrics
from changewatch.analytics.provider import (
    AnalyticsProvider,
    PeriodComparison,
    ProviderError,
    correlate_change,
)
from changewatch.correlation.horizons import compute_windows
from changewatch.correlation.types import (
    CheckpointAssessment,
    MetricAssessment,
    PriorCheckpoint,
)
from changewatch.db.models import ChangeLifecycleEvent
from changewatch.worker.checkpoint_job import (
    CheckpointJob,
    CheckpointRunSummary,
    DueChange,
    build_checkpoint_result,
    headline_metric,
    plan_due_checkpoints,
)
from changewatch.worker.scheduler import setup_scheduler
from changewatch.worker.tasks import TaskRunner

from conftest import utc


class FakeProvider(AnalyticsProvider):
    """Provider returning canned comparisons."""

    name = "posthog"

    def __init__(self, changes: dict):
        self.changes = changes
        self.closed = False

    async def compare_periods(self, metric, page_url, before_start, before_end, after_start, after_end):
        change_percent = self.changes.get(metric)
        if change_percent is None:
            raise ProviderError(f"no data for {metric}")
        return PeriodComparison(
            metric=metric,
            previous_period=100.0,
            current_period=100.0 + change_percent,
            change_percent=change_percent,
        )

    async def close(self):
        self.closed = True


def detected_change(id="c1", detected="2026-01-17T09:00:00Z", status="watching"):
    return SimpleNamespace(
        id=id,
        user_id="user-1",
        element="Your Headline",
        status=status,
        first_detected_at=utc(detected),
    )


def scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    return result


def update_result(rowcount):
    result = MagicMock()
    result.rowcount = rowcount
    return result


def mock_db(*results):
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.side_effect = list(results)
    return db


class TestPlanDueCheckpoints:
    """Test pairing changes with due horizons."""

    def test_skips_changes_with_nothing_due(self, now):
        fresh = detected_change("fresh", "2026-02-14T00:00:00Z")
        week_old = detected_change("week", "2026-02-08T00:00:00Z")

        due = plan_due_checkpoints(
            [(fresh, "https://a.test"), (week_old, "https://b.test")], {}, now
        )

        assert len(due) == 1
        assert due[0].change.id == "week"
        assert due[0].due_horizons == [7]
        assert due[0].page_url == "https://b.test"

    def test_existing_checkpoints_are_excluded(self, now):
        change = detected_change("c1", "2026-01-01T00:00:00Z")
        existing = {
            "c1": [
                PriorCheckpoint(7, CheckpointAssessment.NEUTRAL),
                PriorCheckpoint(14, CheckpointAssessment.NEUTRAL),
            ]
        }

        due = plan_due_checkpoints([(change, "https://a.test")], existing, now)

        assert due[0].due_horizons == [30]
        assert [p.horizon_days for p in due[0].prior] == [7, 14]


class TestBuildCheckpointResult:
    """Test packaging deltas into a checkpoint result."""

    def test_disconnected_analytics(self):
        result = build_checkpoint_result([], reason="analytics_disconnected")

        assert result.assessment == CheckpointAssessment.INCONCLUSIVE
        assert result.confidence == 0.0
        assert result.correlation.to_dict() == {
            "metrics": [],
            "overall_assessment": "inconclusive",
            "reason": "analytics_disconnected",
        }

    def test_headline_metric_skips_neutral(self):
        result = build_checkpoint_result([])
        assert headline_metric(result.correlation.metrics) is None


class TestCorrelateChange:
    """Test provider-backed correlation."""

    @pytest.mark.asyncio
    async def test_failed_metrics_are_skipped(self):
        provider = FakeProvider({"bounce_rate": -12.0, "pageviews": 2.0})
        windows = compute_windows(utc("2026-01-17T09:00:00Z"), 30)

        deltas = await correlate_change(provider, "https://a.test", windows)

        assert [d.name for d in deltas] == ["bounce_rate", "pageviews"]
        assert deltas[0].assessment == MetricAssessment.IMPROVED
        assert deltas[1].assessment == MetricAssessment.NEUTRAL
        assert all(d.source == "posthog" for d in deltas)


class TestProcessChange:
    """Test per-change persistence and transitions."""

    def setup_method(self):
        self.job = CheckpointJob(page_size=10, id_batch_size=10, threshold=5.0)
        self.change = detected_change()
        self.item = DueChange(
            change=self.change,
            page_url="https://a.test",
            due_horizons=[30],
            prior=[
                PriorCheckpoint(7, CheckpointAssessment.NEUTRAL),
                PriorCheckpoint(14, CheckpointAssessment.NEUTRAL),
            ],
        )
        self.summary = CheckpointRunSummary()
        self.validated = {}

    @pytest.mark.asyncio
    async def test_decision_horizon_validates(self, now):
        db = mock_db(scalar_result(42), scalar_result("watching"), update_result(1))
        provider = FakeProvider({"bounce_rate": -12.0, "pageviews": 2.0, "unique_visitors": 1.0})

        await self.job._process_change(db, self.item, provider, self.summary, self.validated, now)

        assert self.summary.checkpoints_written == 1
        assert self.summary.transitions_applied == 1
        assert self.summary.conflicts == 0

        event = db.add.call_args.args[0]
        assert isinstance(event, ChangeLifecycleEvent)
        assert event.from_status == "watching"
        assert event.to_status == "validated"
        assert event.reason == "D+30: metrics improved"
        assert event.checkpoint_id == 42
        assert event.actor_type == "system"

        notice = self.validated["c1"]
        assert notice.observation == "Your Headline changed on Jan 17. After 30 days, bounce rate down 12%."
        db.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_existing_checkpoint_is_skipped(self, now):
        db = mock_db(scalar_result(None))

        await self.job._process_change(db, self.item, None, self.summary, self.validated, now)

        assert self.summary.checkpoints_written == 0
        assert self.summary.transitions_applied == 0
        assert db.execute.await_count == 1
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_status_change_is_a_conflict(self, now):
        db = mock_db(scalar_result(42), scalar_result("watching"), update_result(0))
        provider = FakeProvider({"bounce_rate": 20.0})

        await self.job._process_change(db, self.item, provider, self.summary, self.validated, now)

        assert self.summary.checkpoints_written == 1
        assert self.summary.transitions_applied == 0
        assert self.summary.conflicts == 1
        db.add.assert_not_called()
        db.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_disconnected_analytics_resolves_inconclusive(self, now):
        db = mock_db(scalar_result(7), scalar_result("watching"), update_result(1))

        await self.job._process_change(db, self.item, None, self.summary, self.validated, now)

        event = db.add.call_args.args[0]
        assert event.to_status == "inconclusive"
        assert event.reason == "D+30: no significant change"
        assert self.validated == {}

    @pytest.mark.asyncio
    async def test_early_horizon_only_writes_checkpoint(self, now):
        item = DueChange(change=detected_change(detected="2026-02-08T00:00:00Z"), page_url="https://a.test", due_horizons=[7])
        db = mock_db(scalar_result(3), scalar_result("watching"))

        await self.job._process_change(db, item, None, self.summary, self.validated, now)

        assert self.summary.checkpoints_written == 1
        assert self.summary.transitions_applied == 0
        assert db.execute.await_count == 2
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_watching_at_reversal_horizon_is_counted(self, now):
        item = DueChange(change=detected_change(detected="2025-12-01T00:00:00Z"), page_url="https://a.test", due_horizons=[60])
        db = mock_db(scalar_result(5), scalar_result("watching"))

        await self.job._process_change(db, item, None, self.summary, self.validated, now)

        assert self.summary.stuck_watching == 1
        assert self.summary.transitions_applied == 0


class TestRun:
    """Test the full run loop."""

    @pytest.mark.asyncio
    async def test_no_active_changes(self, now):
        empty = MagicMock()
        empty.all.return_value = []
        db = AsyncMock()
        db.execute.return_value = empty

        @asynccontextmanager
        async def session_factory():
            yield db

        job = CheckpointJob(session_factory=session_factory, page_size=10, id_batch_size=10)
        summary = await job.run(now)

        assert summary.changes_due == 0
        assert summary.checkpoints_written == 0
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_provider_closed_and_errors_counted(self, now):
        provider = FakeProvider({})

        async def provider_factory(user_id):
            return provider

        db = AsyncMock()
        db.execute.side_effect = SQLAlchemyError("connection lost")

        @asynccontextmanager
        async def session_factory():
            yield db

        job = CheckpointJob(provider_factory=provider_factory, session_factory=session_factory)
        summary = CheckpointRunSummary()
        item = DueChange(change=detected_change(), page_url="https://a.test", due_horizons=[30])

        await job._process_user("user-1", [item], summary, now)

        assert summary.errors == 1
        assert provider.closed is True


class TestTaskRunner:
    """Test scheduler-facing task wrappers."""

    @pytest.mark.asyncio
    async def test_failed_run_returns_none(self):
        runner = TaskRunner()
        runner.checkpoint_job = MagicMock()
        runner.checkpoint_job.run = AsyncMock(side_effect=RuntimeError("db down"))

        assert await runner.run_checkpoints() is None

    @pytest.mark.asyncio
    async def test_successful_run_returns_summary(self):
        runner = TaskRunner()
        runner.checkpoint_job = MagicMock()
        runner.checkpoint_job.run = AsyncMock(return_value=CheckpointRunSummary(changes_due=2))

        summary = await runner.run_checkpoints()

        assert summary.changes_due == 2

    @pytest.mark.asyncio
    async def test_recovery_reports_failed_checkpoint_run(self, monkeypatch):
        recorded = []
        monkeypatch.setattr(
            metrics, "record_scheduler_run", lambda job_type, success: recorded.append((job_type, success))
        )
        runner = TaskRunner()
        runner.checkpoint_job = MagicMock()
        runner.checkpoint_job.run = AsyncMock(side_effect=RuntimeError("db down"))

        await runner.recover_missed_runs()

        assert recorded == [("checkpoints", False), ("recovery", False)]

    @pytest.mark.asyncio
    async def test_recovery_reports_successful_checkpoint_run(self, monkeypatch):
        recorded = []
        monkeypatch.setattr(
            metrics, "record_scheduler_run", lambda job_type, success: recorded.append((job_type, success))
        )
        runner = TaskRunner()
        runner.checkpoint_job = MagicMock()
        runner.checkpoint_job.run = AsyncMock(return_value=CheckpointRunSummary())

        await runner.recover_missed_runs()

        assert recorded == [("checkpoints", True), ("recovery", True)]

    def test_scheduler_jobs(self):
        scheduler = setup_scheduler()
        assert {job.id for job in scheduler.get_jobs()} == {"checkpoints", "recovery"}
