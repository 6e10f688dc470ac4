"""SQLAlchemy database models."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Page(Base):
    """Monitored web page."""

    __tablename__ = "pages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    scan_frequency: Mapped[str] = mapped_column(String(16), default="weekly", nullable=False)  # daily, weekly, manual
    metric_focus: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    stable_baseline_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("analyses.id", use_alter=True), nullable=True
    )  # Pinned comparison snapshot
    last_scan_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("analyses.id", use_alter=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    changes: Mapped[list["DetectedChange"]] = relationship(
        "DetectedChange", back_populates="page", cascade="all, delete-orphan"
    )


class Analysis(Base):
    """One scan of a page (screenshot plus extracted summary)."""

    __tablename__ = "analyses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    trigger_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # daily, weekly, deploy, manual
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)  # pending, processing, complete, failed
    screenshot_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mobile_screenshot_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changes_summary: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)  # Holds the progress snapshot
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )


class DetectedChange(Base):
    """A tracked mutation of a page element."""

    __tablename__ = "detected_changes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    page_id: Mapped[str] = mapped_column(String(64), ForeignKey("pages.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    element: Mapped[str] = mapped_column(Text, nullable=False)
    element_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    before_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="watching", nullable=False, index=True)
    correlation_metrics: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    correlation_unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    observation_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    page: Mapped["Page"] = relationship("Page", back_populates="changes")
    checkpoints: Mapped[list["ChangeCheckpoint"]] = relationship(
        "ChangeCheckpoint", back_populates="change", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('watching', 'validated', 'regressed', 'inconclusive', 'reverted', 'superseded')",
            name="ck_detected_change_status",
        ),
    )


class ChangeCheckpoint(Base):
    """Immutable evaluation of a change at one horizon."""

    __tablename__ = "change_checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    change_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("detected_changes.id"), nullable=False, index=True
    )
    horizon_days: Mapped[int] = mapped_column(Integer, nullable=False)
    window_before_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_before_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_after_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_after_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metrics_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
    assessment: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider: Mapped[str] = mapped_column(String(16), default="none", nullable=False)  # posthog, ga4, supabase, none
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    change: Mapped["DetectedChange"] = relationship("DetectedChange", back_populates="checkpoints")

    __table_args__ = (
        UniqueConstraint("change_id", "horizon_days", name="uq_checkpoint_change_horizon"),
        CheckConstraint("horizon_days IN (7, 14, 30, 60, 90)", name="ck_checkpoint_horizon"),
        CheckConstraint(
            "assessment IN ('improved', 'regressed', 'neutral', 'inconclusive')",
            name="ck_checkpoint_assessment",
        ),
    )


class ChangeLifecycleEvent(Base):
    """Audit record for every status mutation of a change."""

    __tablename__ = "change_lifecycle_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    change_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("detected_changes.id"), nullable=False, index=True
    )
    from_status: Mapped[str] = mapped_column(String(16), nullable=False)
    to_status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    actor_type: Mapped[str] = mapped_column(String(16), default="system", nullable=False)  # system, user
    checkpoint_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("change_checkpoints.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
