"""Tests for checkpoint assessment."""

from changewatch.correlation.assessment import (
    FALLBACK_CONFIDENCE,
    assess_checkpoint,
    classify_metric,
    describe_fallback,
)
from changewatch.correlation.types import CheckpointAssessment, MetricAssessment, MetricDelta


def delta(name: str, change_percent: float, assessment: str) -> MetricDelta:
    return MetricDelta(
        name=name,
        before=100.0,
        after=100.0 + change_percent,
        change_percent=change_percent,
        assessment=MetricAssessment(assessment),
    )


class TestAssessCheckpoint:
    """Test worst-case-wins aggregation."""

    def test_empty_is_inconclusive(self):
        assert assess_checkpoint([]) == CheckpointAssessment.INCONCLUSIVE

    def test_none_is_inconclusive(self):
        assert assess_checkpoint(None) == CheckpointAssessment.INCONCLUSIVE

    def test_regression_outweighs_improvement(self):
        metrics = [
            delta("bounce_rate", 25, "regressed"),
            delta("pageviews", 20, "improved"),
        ]
        assert assess_checkpoint(metrics) == CheckpointAssessment.REGRESSED

    def test_improved_when_only_improvements(self):
        assert assess_checkpoint([delta("pageviews", 20, "improved")]) == CheckpointAssessment.IMPROVED

    def test_improvement_with_neutral_is_improved(self):
        metrics = [delta("pageviews", 2, "neutral"), delta("bounce_rate", -12, "improved")]
        assert assess_checkpoint(metrics) == CheckpointAssessment.IMPROVED

    def test_all_neutral_is_neutral(self):
        assert assess_checkpoint([delta("pageviews", 2, "neutral")]) == CheckpointAssessment.NEUTRAL


class TestClassifyMetric:
    """Test per-metric sign convention."""

    def test_small_moves_are_neutral(self):
        assert classify_metric("pageviews", 5.0) == MetricAssessment.NEUTRAL
        assert classify_metric("pageviews", -4.9) == MetricAssessment.NEUTRAL

    def test_higher_is_better_by_default(self):
        assert classify_metric("pageviews", 12) == MetricAssessment.IMPROVED
        assert classify_metric("unique_visitors", -12) == MetricAssessment.REGRESSED

    def test_bounce_rate_lower_is_better(self):
        assert classify_metric("bounce_rate", -12) == MetricAssessment.IMPROVED
        assert classify_metric("bounce_rate", 12) == MetricAssessment.REGRESSED

    def test_custom_threshold(self):
        assert classify_metric("pageviews", 8, threshold=10) == MetricAssessment.NEUTRAL


class TestDescribeFallback:
    """Test reasoning text for rule-based assessments."""

    def test_no_data(self):
        reasoning, confidence = describe_fallback([], CheckpointAssessment.INCONCLUSIVE)
        assert "no metric data available" in reasoning
        assert confidence == 0.0

    def test_counts_directions(self):
        metrics = [
            delta("bounce_rate", 25, "regressed"),
            delta("pageviews", 20, "improved"),
            delta("unique_visitors", 1, "neutral"),
        ]
        reasoning, confidence = describe_fallback(metrics, CheckpointAssessment.REGRESSED)
        assert "3 metrics assessed" in reasoning
        assert "1 improved, 1 regressed" in reasoning
        assert reasoning.endswith("Assessment: regressed.")
        assert confidence == FALLBACK_CONFIDENCE
