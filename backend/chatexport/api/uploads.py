"""
Upload helpers shared by the backup and export endpoints.
"""

import logging

from fastapi import HTTPException, UploadFile, status

from ..config import settings
from ..core import BackupParseError, parse_backup
from ..models.tree import ParsedBackup

logger = logging.getLogger(__name__)

ACCEPTED_TYPES = {"application/json", "text/json"}


async def read_backup_upload(file: UploadFile) -> ParsedBackup:
    """
    Read and parse an uploaded backup file.

    Raises:
        HTTPException: 400 for a wrong file type or an unparseable backup,
            413 when the file exceeds max_upload_bytes
    """
    filename = file.filename or "backup.json"
    if file.content_type not in ACCEPTED_TYPES and not filename.lower().endswith(".json"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please upload the JSON file exported from LobeChat",
        )

    data = await file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Backup exceeds {settings.max_upload_bytes} bytes",
        )

    try:
        return parse_backup(data, source_file_name=filename)
    except BackupParseError as e:
        logger.warning(f"Rejected backup {filename}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
