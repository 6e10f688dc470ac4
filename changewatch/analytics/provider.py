"""Analytics provider interface and before/after metric correlation.

Concrete adapters (PostHog, GA4, Supabase) live outside this package; the
checkpoint runner receives them through a provider factory.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from changewatch.correlation.assessment import SIGNIFICANCE_THRESHOLD, classify_metric
from changewatch.correlation.types import CorrelationWindows, MetricDelta

logger = logging.getLogger(__name__)

CORRELATION_METRICS = ("bounce_rate", "pageviews", "unique_visitors")


@dataclass
class PeriodComparison:
    """Absolute metric values for two periods."""

    metric: str
    previous_period: float
    current_period: float
    change_percent: float


class ProviderError(Exception):
    """Raised by adapters when a metric query fails."""


class AnalyticsProvider(ABC):
    """Abstract base class for analytics adapters."""

    name: str = "unknown"

    @abstractmethod
    async def compare_periods(
        self,
        metric: str,
        page_url: str,
        before_start: datetime,
        before_end: datetime,
        after_start: datetime,
        after_end: datetime,
    ) -> PeriodComparison:
        """
        Compare a metric between two periods.

        Raises:
            ProviderError: If the query fails
        """
        pass

    async def close(self):
        """Release any held resources."""
        pass


async def correlate_change(
    provider: AnalyticsProvider,
    page_url: str,
    windows: CorrelationWindows,
    metric_names: Sequence[str] = CORRELATION_METRICS,
    threshold: float = SIGNIFICANCE_THRESHOLD,
) -> list[MetricDelta]:
    """
    Fetch before/after comparisons and classify each metric.

    Metrics the provider fails to return are skipped, not fatal.

    Args:
        provider: Analytics adapter
        page_url: Page to query
        windows: Before/after ranges for the horizon
        metric_names: Metrics to compare
        threshold: Significance threshold in percent

    Returns:
        Classified MetricDelta list (possibly empty)
    """

    async def _compare(metric: str) -> Optional[PeriodComparison]:
        try:
            return await provider.compare_periods(
                metric,
                page_url,
                windows.before_start,
                windows.before_end,
                windows.after_start,
                windows.after_end,
            )
        except Exception as e:
            logger.error(f"Failed to correlate {metric} via {provider.name}: {e}")
            return None

    comparisons = await asyncio.gather(*(_compare(m) for m in metric_names))

    deltas: list[MetricDelta] = []
    for comparison in comparisons:
        if comparison is None:
            continue
        deltas.append(
            MetricDelta(
                name=comparison.metric,
                before=comparison.previous_period,
                after=comparison.current_period,
                change_percent=comparison.change_percent,
                assessment=classify_metric(comparison.metric, comparison.change_percent, threshold),
                source=provider.name,
            )
        )
    return deltas
