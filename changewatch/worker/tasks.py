"""Background tasks run by the scheduler."""

import logging
from typing import Optional

from changewatch.worker.checkpoint_job import CheckpointJob, CheckpointRunSummary, ProviderFactory
from changewatch.worker.recovery import Retrigger, recover_stale_analyses
from changewatch import metrics

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for background tasks.

    - Daily checkpoint evaluation for every active change
    - Recovery of analyses and checkpoint runs the primary trigger missed

    Collaborators outside this service (analytics adapters, the analysis
    pipeline) are plugged in through ``initialize``.
    """

    def __init__(self):
        self.provider_factory: Optional[ProviderFactory] = None
        self.analysis_retrigger: Optional[Retrigger] = None
        self.checkpoint_job: Optional[CheckpointJob] = None

    async def initialize(
        self,
        provider_factory: Optional[ProviderFactory] = None,
        analysis_retrigger: Optional[Retrigger] = None,
    ):
        """Initialize task runner."""
        self.provider_factory = provider_factory
        self.analysis_retrigger = analysis_retrigger
        self.checkpoint_job = CheckpointJob(provider_factory=provider_factory)
        logger.info(
            "Task runner initialized (analytics provider: %s, analysis retrigger: %s)",
            "configured" if provider_factory else "none",
            "configured" if analysis_retrigger else "none",
        )

    async def close(self):
        """Clean up resources."""
        self.checkpoint_job = None

    async def run_checkpoints(self) -> Optional[CheckpointRunSummary]:
        """Evaluate all due checkpoints (scheduled trigger)."""
        if self.checkpoint_job is None:
            await self.initialize()

        try:
            summary = await self.checkpoint_job.run()
        except Exception as e:
            metrics.record_scheduler_run("checkpoints", success=False)
            logger.error(f"Checkpoint run failed: {e}", exc_info=True)
            return None

        metrics.record_scheduler_run("checkpoints", success=True)
        for notice in summary.validated:
            logger.info("Change validated for user %s: %s", notice.user_id, notice.observation)
        return summary

    async def recover_missed_runs(self):
        """
        Backup trigger for the primary event-driven scheduler.

        Re-submits stuck daily/weekly analyses, then re-runs checkpoint
        evaluation. Both steps derive their work from current state, so a
        run after a healthy primary finds nothing to do.
        """
        if self.analysis_retrigger is not None:
            await recover_stale_analyses(self.analysis_retrigger, reason_prefix="Recovery")
        else:
            logger.debug("Recovery: no analysis retrigger configured, skipping stale scan check")

        summary = await self.run_checkpoints()
        metrics.record_scheduler_run("recovery", success=summary is not None)


task_runner = TaskRunner()
