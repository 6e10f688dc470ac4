"""Human-readable text for checkpoint results.

Provides formatters for:
- Checkpoint observations (notification and email collaborators)
- Short metric summaries for validated items on the dashboard
"""

from datetime import datetime
from typing import Optional, Union

from changewatch.correlation.horizons import days_between, ensure_utc
from changewatch.correlation.types import (
    CheckpointAssessment,
    CorrelationMetrics,
    MetricAssessment,
    MetricDelta,
)

# Metric key -> human-friendly name
FRIENDLY_METRIC_NAMES: dict[str, str] = {
    "bounce_rate": "bounce rate",
    "conversion_rate": "conversion rate",
    "time_on_page": "time on page",
    "ctr": "click-through rate",
    "scroll_depth": "scroll depth",
    "form_completion": "form completion",
    "pageviews": "pageviews",
    "unique_visitors": "unique visitors",
}

NO_METRICS_TEXT = "Correlation confirmed"


def friendly_metric_name(name: str, capitalize: bool = False) -> str:
    """Look up the display name for a metric key; unknown keys pass through."""
    friendly = FRIENDLY_METRIC_NAMES.get(name)
    if friendly is None:
        return name
    return friendly[:1].upper() + friendly[1:] if capitalize else friendly


def direction_word(change_percent: float) -> str:
    """'up' or 'down', independent of whether the move is good."""
    return "up" if change_percent > 0 else "down"


def format_percent(value: float) -> str:
    """Render a percent magnitude without trailing zeros (12, 12.5)."""
    text = f"{round(abs(value), 1):.1f}"
    return text[:-2] if text.endswith(".0") else text


def format_short_date(value: datetime) -> str:
    """Month abbreviation and day, e.g. 'Feb 10'."""
    value = ensure_utc(value)
    return f"{value:%b} {value.day}"


def format_checkpoint_observation(
    element: str,
    change_date: datetime,
    horizon_days: int,
    metric: Optional[Union[MetricDelta, dict]],
    assessment: Union[CheckpointAssessment, str],
) -> str:
    """
    Render a checkpoint result as one sentence.

    Args:
        element: Label of the changed page element
        change_date: When the change was detected
        horizon_days: Checkpoint horizon
        metric: Headline metric (needs name and change_percent), or None
        assessment: Checkpoint assessment

    Returns:
        e.g. "Your Headline changed on Feb 10. After 30 days, bounce rate down 12%."
    """
    prefix = f"{element} changed on {format_short_date(change_date)}. After {horizon_days} days,"

    if metric is None or CheckpointAssessment(assessment) == CheckpointAssessment.INCONCLUSIVE:
        return f"{prefix} no significant metric movement."

    if isinstance(metric, dict):
        name, change_percent = metric["name"], float(metric["change_percent"])
    else:
        name, change_percent = metric.name, metric.change_percent

    return (
        f"{prefix} {friendly_metric_name(name)} "
        f"{direction_word(change_percent)} {format_percent(change_percent)}%."
    )


def pick_headline_metric(metrics: list[MetricDelta]) -> Optional[MetricDelta]:
    """First non-neutral metric, falling back to the first one."""
    if not metrics:
        return None
    for metric in metrics:
        if metric.assessment != MetricAssessment.NEUTRAL:
            return metric
    return metrics[0]


def format_metric_friendly_text(
    correlation_metrics: Optional[CorrelationMetrics],
    first_detected_at: datetime,
    now: datetime,
) -> tuple[str, str, str]:
    """
    Summarise a change's latest metric snapshot for the dashboard.

    Returns:
        Tuple of (metric key, signed change, friendly text), e.g.
        ("bounce_rate", "-12%", "Bounce rate down 12% over 9 days").
        Without recorded metrics: ("", "", "Correlation confirmed").
    """
    if correlation_metrics is None or not correlation_metrics.metrics:
        return "", "", NO_METRICS_TEXT

    top = pick_headline_metric(correlation_metrics.metrics)
    sign = "+" if top.change_percent > 0 else "-" if top.change_percent < 0 else ""
    change = f"{sign}{format_percent(top.change_percent)}%"
    days = max(1, days_between(first_detected_at, now))

    friendly_text = (
        f"{friendly_metric_name(top.name, capitalize=True)} "
        f"{direction_word(top.change_percent)} {format_percent(top.change_percent)}% "
        f"over {days} days"
    )
    return top.name, change, friendly_text
