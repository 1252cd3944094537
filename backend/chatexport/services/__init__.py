"""Services module - background sync jobs."""

from .sync_jobs import SyncJob, SyncJobManager, get_job_manager

__all__ = ['SyncJob', 'SyncJobManager', 'get_job_manager']
