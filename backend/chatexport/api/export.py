"""
Export API endpoints - Markdown archives and Notion sync jobs.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from fastapi.responses import Response

from ..config import settings
from ..exporters.markdown import build_markdown_archive, render_tree, safe_filename, save_markdown_export
from ..exporters.notion import NotionSyncConfig
from ..services import SyncJob, get_job_manager
from ..storage import LocalStorage
from .uploads import read_backup_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/export", tags=["export"])


def _job_payload(job: SyncJob) -> dict:
    return {
        "jobId": job.id,
        "mode": job.mode,
        "status": job.status,
        "stopRequested": job.stop_requested,
        "createdAt": job.created_at.isoformat(),
        "finishedAt": job.finished_at.isoformat() if job.finished_at else None,
        "summary": job.summary.__dict__ if job.summary else None,
        "logs": [
            {
                "id": entry.id,
                "timestamp": entry.timestamp.isoformat(),
                "level": entry.level,
                "message": entry.message,
            }
            for entry in job.logs
        ],
    }


@router.post("/markdown")
async def export_markdown(file: UploadFile = File(...)):
    """
    Convert a backup into a zip of Markdown files.

    Returns:
        The zip archive as an attachment
    """
    parsed = await read_backup_upload(file)
    archive = build_markdown_archive(parsed)
    # Header values must stay ASCII
    ascii_name = re.sub(r"[^A-Za-z0-9._-]", "_", archive.file_name)
    return Response(
        content=archive.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{ascii_name}"',
            "X-File-Count": str(archive.file_count),
        },
    )


@router.post("/markdown/local")
async def export_markdown_local(file: UploadFile = File(...)):
    """
    Write the Markdown export below the configured export directory.

    Returns:
        Directory name and the relative paths written
    """
    parsed = await read_backup_upload(file)
    export = render_tree(parsed)
    stem = (parsed.source_file_name or "lobechat-export").rsplit(".", 1)[0]
    prefix = safe_filename(f"{stem}-markdown", "lobechat-export-markdown")

    storage = LocalStorage(settings.export_storage_path)
    paths = await save_markdown_export(storage, export, prefix)
    return {
        "directory": prefix,
        "indexPath": f"{prefix}/{export.index_path}",
        "fileCount": len(paths),
        "files": paths,
    }


@router.post("/notion", status_code=status.HTTP_202_ACCEPTED)
async def start_notion_export(
    file: UploadFile = File(...),
    token: str = Form(...),
    assistant_database_id: Optional[str] = Form(None),
    topic_database_id: Optional[str] = Form(None),
    proxy_url: Optional[str] = Form(None),
    parent_page_id: Optional[str] = Form(None),
):
    """
    Start a background sync of a backup to Notion.

    Both database ids select linked-record mode; otherwise pages are created.

    Returns:
        The job state, including its id for polling
    """
    if not token.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please provide a Notion integration token",
        )

    parsed = await read_backup_upload(file)
    if not parsed.groups:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No conversations to export",
        )

    config = NotionSyncConfig(
        token=token,
        assistant_database_id=assistant_database_id,
        topic_database_id=topic_database_id,
        proxy_url=proxy_url,
        parent_page_id=parent_page_id,
    )
    job = get_job_manager().start(parsed, config)
    return _job_payload(job)


@router.get("/notion/{job_id}")
async def get_notion_export(job_id: str):
    """Status and log of a sync job."""
    job = get_job_manager().get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return _job_payload(job)


@router.post("/notion/{job_id}/stop")
async def stop_notion_export(job_id: str):
    """Ask a running sync job to stop after the current remote call."""
    job = get_job_manager().request_stop(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return _job_payload(job)
