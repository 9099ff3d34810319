"""
Checkpoint Scheduler.

APScheduler-based background job that snapshots the running engine's cursor
at a fixed interval.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.constants import DEFAULT_CHECKPOINT_INTERVAL_SECONDS
from core.logging import checkpoint_logger as logger

from .checkpoint import CheckpointCoordinator
from .errors import CommitSourceError

CHECKPOINT_JOB_ID = "checkpoint"


class CheckpointScheduler:
    """
    Periodic checkpointing using APScheduler.

    Features:
    - One job per source, never overlapping (max_instances=1, coalesce)
    - Failed checkpoints are logged and counted; the next run tries again
    - Statistics tracking
    """

    def __init__(
        self,
        coordinator: CheckpointCoordinator,
        interval_seconds: int = DEFAULT_CHECKPOINT_INTERVAL_SECONDS,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.stats: Dict[str, Any] = {
            "last_run": None,
            "last_cursor": None,
            "runs": 0,
            "errors": 0,
        }
        self._running = False

    def add_checkpoint_job(self) -> None:
        """Register the periodic checkpoint job."""
        self.scheduler.add_job(
            self.run_checkpoint,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=CHECKPOINT_JOB_ID,
            name=f"Checkpoint: {self.coordinator.source_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "checkpoint_job_added",
            source=self.coordinator.source_id,
            interval_seconds=self.interval_seconds,
        )

    def run_checkpoint(self) -> bool:
        """
        Take one checkpoint.

        Returns:
            True if the snapshot was persisted.
        """
        started = datetime.now(timezone.utc)
        try:
            snapshot = self.coordinator.checkpoint()
        except CommitSourceError as e:
            self.stats["errors"] += 1
            logger.error("checkpoint_failed", source=self.coordinator.source_id, error=str(e))
            return False

        self.stats["last_run"] = started.isoformat()
        self.stats["last_cursor"] = snapshot.cursor.isoformat()
        self.stats["runs"] += 1
        return True

    def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            return

        self.add_checkpoint_job()
        self.scheduler.start()
        self._running = True
        logger.info("checkpoint_scheduler_started")

    def stop(self) -> None:
        """Stop the scheduler, waiting for a running checkpoint to finish."""
        if not self._running:
            return

        self.scheduler.shutdown(wait=True)
        self._running = False
        logger.info("checkpoint_scheduler_stopped")

    @property
    def running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })

        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "checkpoints": dict(self.stats),
            "jobs": jobs,
        }


__all__ = ["CheckpointScheduler", "CHECKPOINT_JOB_ID"]
