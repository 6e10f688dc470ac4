"""Value types shared by the correlation engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ChangeStatus(str, Enum):
    """Lifecycle status of a detected change."""

    WATCHING = "watching"
    VALIDATED = "validated"
    REGRESSED = "regressed"
    INCONCLUSIVE = "inconclusive"
    REVERTED = "reverted"  # Terminal: user rolled the change back
    SUPERSEDED = "superseded"  # Terminal: a newer change replaced it

    @property
    def is_terminal(self) -> bool:
        return self in (ChangeStatus.REVERTED, ChangeStatus.SUPERSEDED)


class CheckpointAssessment(str, Enum):
    """Aggregate classification of metric movement at one checkpoint."""

    IMPROVED = "improved"
    REGRESSED = "regressed"
    NEUTRAL = "neutral"
    INCONCLUSIVE = "inconclusive"


class MetricAssessment(str, Enum):
    """Per-metric classification, sign convention already applied."""

    IMPROVED = "improved"
    REGRESSED = "regressed"
    NEUTRAL = "neutral"


@dataclass
class MetricDelta:
    """Before/after comparison of a single metric."""

    name: str
    before: float
    after: float
    change_percent: float
    assessment: MetricAssessment
    source: Optional[str] = None  # posthog, ga4, supabase

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "before": self.before,
            "after": self.after,
            "change_percent": self.change_percent,
            "assessment": self.assessment.value,
        }
        if self.source:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MetricDelta":
        return cls(
            name=data["name"],
            before=float(data.get("before", 0)),
            after=float(data.get("after", 0)),
            change_percent=float(data.get("change_percent", 0)),
            assessment=MetricAssessment(data.get("assessment", "neutral")),
            source=data.get("source"),
        )


@dataclass
class CorrelationMetrics:
    """Metric snapshot stored on a change and on each checkpoint row."""

    metrics: list[MetricDelta] = field(default_factory=list)
    overall_assessment: CheckpointAssessment = CheckpointAssessment.INCONCLUSIVE
    reason: Optional[str] = None  # e.g. "analytics_disconnected"

    def to_dict(self) -> dict:
        data = {
            "metrics": [m.to_dict() for m in self.metrics],
            "overall_assessment": self.overall_assessment.value,
        }
        if self.reason:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["CorrelationMetrics"]:
        """Build from a persisted JSON blob; None stays None."""
        if not data:
            return None
        return cls(
            metrics=[MetricDelta.from_dict(m) for m in data.get("metrics") or []],
            overall_assessment=CheckpointAssessment(
                data.get("overall_assessment", "inconclusive")
            ),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class StatusTransition:
    """A status change the resolver wants applied to a detected change."""

    new_status: ChangeStatus
    reason: str


@dataclass(frozen=True)
class PriorCheckpoint:
    """Minimal view of an already-computed checkpoint."""

    horizon_days: int
    assessment: CheckpointAssessment


@dataclass(frozen=True)
class CorrelationWindows:
    """Before/after query ranges for one horizon (UTC)."""

    before_start: datetime
    before_end: datetime
    after_start: datetime
    after_end: datetime
