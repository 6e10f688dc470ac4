"""Status state machine for detected changes."""

from typing import Optional, Sequence, Union

from changewatch.correlation.horizons import (
    DECISION_HORIZON,
    EARLY_HORIZONS,
    HORIZONS,
    REVERSAL_HORIZONS,
)
from changewatch.correlation.types import (
    ChangeStatus,
    CheckpointAssessment,
    PriorCheckpoint,
    StatusTransition,
)


def resolve_status_transition(
    current_status: Union[ChangeStatus, str],
    horizon_days: int,
    assessment: Union[CheckpointAssessment, str],
    prior_checkpoints: Sequence[PriorCheckpoint] = (),
) -> Optional[StatusTransition]:
    """
    Decide whether a checkpoint moves a change to a new status.

    Rules:
    - reverted/superseded are terminal: never transition.
    - D+7, D+14: early signal only.
    - D+30: first resolution, only out of ``watching``.
    - D+60, D+90: reverse a resolved status or resolve an inconclusive one.

    Args:
        current_status: Status the change has right now
        horizon_days: Horizon of the checkpoint just computed
        assessment: Assessment of that checkpoint
        prior_checkpoints: Earlier checkpoints; accepted for trend rules,
            the current status already encodes their outcome

    Returns:
        StatusTransition, or None when the status stays as is

    Raises:
        ValueError: If status, horizon or assessment is not a known value
    """
    status = ChangeStatus(current_status)
    assessment = CheckpointAssessment(assessment)
    if horizon_days not in HORIZONS:
        raise ValueError(f"Unknown horizon: {horizon_days}")

    if status.is_terminal:
        return None

    if horizon_days in EARLY_HORIZONS:
        return None

    if horizon_days == DECISION_HORIZON:
        return _resolve_decision(status, assessment)

    if horizon_days in REVERSAL_HORIZONS:
        return _resolve_reversal(status, horizon_days, assessment)

    return None


def _resolve_decision(
    status: ChangeStatus,
    assessment: CheckpointAssessment,
) -> Optional[StatusTransition]:
    # Already resolved by another path (e.g. manual override)
    if status != ChangeStatus.WATCHING:
        return None

    prefix = f"D+{DECISION_HORIZON}"
    if assessment == CheckpointAssessment.IMPROVED:
        return StatusTransition(ChangeStatus.VALIDATED, f"{prefix}: metrics improved")
    if assessment == CheckpointAssessment.REGRESSED:
        return StatusTransition(ChangeStatus.REGRESSED, f"{prefix}: metrics regressed")
    if assessment in (CheckpointAssessment.NEUTRAL, CheckpointAssessment.INCONCLUSIVE):
        return StatusTransition(ChangeStatus.INCONCLUSIVE, f"{prefix}: no significant change")

    raise ValueError(f"Unhandled assessment: {assessment}")


def _resolve_reversal(
    status: ChangeStatus,
    horizon_days: int,
    assessment: CheckpointAssessment,
) -> Optional[StatusTransition]:
    prefix = f"D+{horizon_days}"

    if status == ChangeStatus.VALIDATED:
        if assessment == CheckpointAssessment.REGRESSED:
            return StatusTransition(
                ChangeStatus.REGRESSED, f"{prefix}: trend reversed to regression"
            )
        return None

    if status == ChangeStatus.REGRESSED:
        if assessment == CheckpointAssessment.IMPROVED:
            return StatusTransition(
                ChangeStatus.VALIDATED, f"{prefix}: trend reversed to improvement"
            )
        return None

    if status == ChangeStatus.INCONCLUSIVE:
        if assessment == CheckpointAssessment.IMPROVED:
            return StatusTransition(ChangeStatus.VALIDATED, f"{prefix}: clear signal emerged")
        if assessment == CheckpointAssessment.REGRESSED:
            return StatusTransition(ChangeStatus.REGRESSED, f"{prefix}: clear signal emerged")
        return None

    # Still watching past the decision horizon: D+30 was missed or did not
    # fire. Left unresolved here; the evaluation run reports it.
    if status == ChangeStatus.WATCHING:
        return None

    raise ValueError(f"Unhandled status: {status}")
