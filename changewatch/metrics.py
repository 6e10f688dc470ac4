"""Prometheus metrics for the change outcome worker."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("changewatch", "Change outcome correlation worker info")
app_info.info({"version": "0.1.0", "name": "changewatch"})

# Checkpoint metrics
checkpoints_written_total = Counter(
    "checkpoints_written_total",
    "Total number of checkpoints persisted",
    ["horizon_days", "assessment"],
)

checkpoint_errors_total = Counter(
    "checkpoint_errors_total",
    "Total number of checkpoint evaluations that failed",
    ["stage"],
)

checkpoint_run_duration_seconds = Histogram(
    "checkpoint_run_duration_seconds",
    "Time spent in a full checkpoint evaluation run",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

# Status machine metrics
status_transitions_total = Counter(
    "status_transitions_total",
    "Total number of change status transitions applied",
    ["from_status", "to_status"],
)

status_transition_conflicts_total = Counter(
    "status_transition_conflicts_total",
    "Status transitions skipped because the status changed concurrently",
)

# Progress metrics
progress_compose_failures_total = Counter(
    "progress_compose_failures_total",
    "Progress compositions that failed closed on a data access error",
)

# Recovery metrics
analyses_retriggered_total = Counter(
    "analyses_retriggered_total",
    "Pending analyses re-triggered by the recovery job",
    ["trigger_type", "status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_checkpoint_written(horizon_days: int, assessment: str):
    """Record a newly persisted checkpoint."""
    checkpoints_written_total.labels(
        horizon_days=str(horizon_days), assessment=assessment
    ).inc()


def record_checkpoint_error(stage: str):
    """Record a checkpoint failure at the given pipeline stage."""
    checkpoint_errors_total.labels(stage=stage).inc()


def record_status_transition(from_status: str, to_status: str):
    """Record an applied status transition."""
    status_transitions_total.labels(from_status=from_status, to_status=to_status).inc()


def record_transition_conflict():
    """Record a compare-and-swap miss on a status update."""
    status_transition_conflicts_total.inc()


def record_progress_failure():
    """Record a fail-closed progress composition."""
    progress_compose_failures_total.inc()


def record_analysis_retriggered(trigger_type: str, success: bool):
    """Record a recovery re-trigger attempt."""
    status = "success" if success else "error"
    analyses_retriggered_total.labels(trigger_type=trigger_type, status=status).inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
