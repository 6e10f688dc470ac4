"""Checkpoint assessment from per-metric deltas."""

from typing import Optional, Sequence

from changewatch.correlation.types import (
    CheckpointAssessment,
    MetricAssessment,
    MetricDelta,
)

SIGNIFICANCE_THRESHOLD = 5.0  # abs(change_percent) must exceed this

# Metrics where a decrease is the good direction
LOWER_IS_BETTER = frozenset({"bounce_rate"})

FALLBACK_CONFIDENCE = 0.3


def assess_checkpoint(metrics: Optional[Sequence[MetricDelta]]) -> CheckpointAssessment:
    """
    Aggregate per-metric assessments into one checkpoint assessment.

    Worst case wins: a single regressed metric makes the checkpoint
    regressed, so "improved" always means zero regressions.
    """
    if not metrics:
        return CheckpointAssessment.INCONCLUSIVE

    assessments = {m.assessment for m in metrics}

    if MetricAssessment.REGRESSED in assessments:
        return CheckpointAssessment.REGRESSED
    if MetricAssessment.IMPROVED in assessments:
        return CheckpointAssessment.IMPROVED
    return CheckpointAssessment.NEUTRAL


def classify_metric(
    name: str,
    change_percent: float,
    threshold: float = SIGNIFICANCE_THRESHOLD,
) -> MetricAssessment:
    """
    Classify a raw before/after change for one metric.

    Args:
        name: Metric key (e.g. "bounce_rate")
        change_percent: Signed percent change from before to after
        threshold: Moves at or below this magnitude are neutral

    Returns:
        MetricAssessment with the metric's sign convention applied
    """
    if abs(change_percent) <= threshold:
        return MetricAssessment.NEUTRAL

    went_up = change_percent > 0
    if name in LOWER_IS_BETTER:
        went_up = not went_up

    return MetricAssessment.IMPROVED if went_up else MetricAssessment.REGRESSED


def describe_fallback(
    metrics: Optional[Sequence[MetricDelta]],
    assessment: CheckpointAssessment,
) -> tuple[str, float]:
    """
    Build reasoning text and confidence for a rule-based assessment.

    Returns:
        Tuple of (reasoning, confidence)
    """
    if not metrics:
        return (
            f"Deterministic assessment: no metric data available. Assessment: {assessment.value}.",
            0.0,
        )

    improved = sum(1 for m in metrics if m.assessment == MetricAssessment.IMPROVED)
    regressed = sum(1 for m in metrics if m.assessment == MetricAssessment.REGRESSED)
    reasoning = (
        f"Deterministic assessment: {len(metrics)} metrics assessed, "
        f"{improved} improved, {regressed} regressed. Assessment: {assessment.value}."
    )
    return reasoning, FALLBACK_CONFIDENCE
