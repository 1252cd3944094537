"""
Sync Job Manager - Runs Notion syncs as background tasks.

Each job owns its log and its stop flag; the HTTP layer only reads the log
and flips the flag.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..config import settings
from ..exporters.notion import NotionSyncConfig, SyncStopped, SyncSummary, sync_to_notion
from ..models.tree import ParsedBackup

logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    """One line of a job log."""
    id: str
    timestamp: datetime
    level: str  # info, success, warning, error
    message: str


@dataclass
class SyncJob:
    """State of one sync run."""
    id: str
    mode: str
    status: str = "running"  # running, completed, stopped, failed
    stop_requested: bool = False
    logs: List[LogEntry] = field(default_factory=list)
    summary: Optional[SyncSummary] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def append_log(self, message: str, level: str = "info") -> None:
        self.logs.append(LogEntry(
            id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
        ))

    def should_stop(self) -> bool:
        return self.stop_requested


class SyncJobManager:
    """Keeps track of running and finished sync jobs in memory."""

    def __init__(self, max_finished_jobs: Optional[int] = None):
        self._jobs: Dict[str, SyncJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self.max_finished_jobs = (
            settings.notion_max_finished_jobs if max_finished_jobs is None else max_finished_jobs
        )

    def get(self, job_id: str) -> Optional[SyncJob]:
        return self._jobs.get(job_id)

    def start(self, parsed: ParsedBackup, config: NotionSyncConfig) -> SyncJob:
        """Create a job and schedule its run on the current event loop."""
        self._evict_finished()
        job = SyncJob(id=uuid.uuid4().hex, mode="databases" if config.use_databases else "pages")
        self._jobs[job.id] = job
        job.append_log(
            "Starting sync to Notion databases" if config.use_databases else "Starting Notion page creation"
        )
        self._tasks[job.id] = asyncio.create_task(self.run(job, parsed, config))
        logger.info(f"Sync job {job.id} started", extra={"extra_fields": {"job_id": job.id, "mode": job.mode}})
        return job

    def _evict_finished(self) -> None:
        """Forget the oldest finished jobs beyond max_finished_jobs."""
        finished = [job_id for job_id, job in self._jobs.items() if job.status != "running"]
        for job_id in finished[:max(len(finished) - self.max_finished_jobs, 0)]:
            del self._jobs[job_id]
            logger.debug(f"Evicted finished sync job {job_id}")

    def request_stop(self, job_id: str) -> Optional[SyncJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.status == "running" and not job.stop_requested:
            job.stop_requested = True
            job.append_log("Stop requested, the current step will finish first")
        return job

    async def shutdown(self) -> None:
        """Ask every running job to stop and wait for them to wind down."""
        pending = list(self._tasks.items())
        for job_id, _ in pending:
            self.request_stop(job_id)
        if pending:
            logger.info(f"Waiting for {len(pending)} sync job(s) to stop")
            await asyncio.gather(*(task for _, task in pending), return_exceptions=True)

    async def run(self, job: SyncJob, parsed: ParsedBackup, config: NotionSyncConfig) -> SyncJob:
        """Run the sync and translate its outcome into the job status."""
        try:
            job.summary = await sync_to_notion(
                parsed, config, log=job.append_log, should_stop=job.should_stop
            )
            job.status = "completed"
            job.append_log(
                f"Notion export finished: {job.summary.created} created, "
                f"{job.summary.replaced} replaced, {job.summary.skipped} unchanged",
                "success",
            )
        except SyncStopped:
            job.status = "stopped"
            job.append_log("Notion export stopped", "info")
        except Exception as e:
            logger.error(f"Sync job {job.id} failed: {e}", exc_info=True)
            job.status = "failed"
            job.append_log(f"Notion export failed: {e}", "error")
        finally:
            job.finished_at = datetime.now(timezone.utc)
            self._tasks.pop(job.id, None)
        return job


# Global job manager instance
_job_manager: Optional[SyncJobManager] = None


def get_job_manager() -> SyncJobManager:
    """
    Get the global sync job manager.

    Returns:
        SyncJobManager: Global job manager
    """
    global _job_manager
    if _job_manager is None:
        _job_manager = SyncJobManager()
    return _job_manager
