"""
Backup API endpoints - Parse an export and describe its tree.
"""

from typing import Any, Dict

from fastapi import APIRouter, File, UploadFile

from ..models.tree import ParsedBackup
from .uploads import read_backup_upload

router = APIRouter(prefix="/backup", tags=["backup"])


def summarize_tree(parsed: ParsedBackup) -> Dict[str, Any]:
    """JSON-friendly view of the assistant tree with message counts."""
    return {
        "sourceFileName": parsed.source_file_name,
        "stats": parsed.stats.to_dict(),
        "groups": [
            {
                "agentId": group.agent_id,
                "agentLabel": group.agent_label,
                "sessions": [
                    {
                        "sessionId": session_group.session_id,
                        "sessionLabel": session_group.session_label,
                        "topics": [
                            {
                                "topicId": topic_group.topic_id,
                                "topicLabel": topic_group.topic_label,
                                "messageCount": len(topic_group.messages),
                            }
                            for topic_group in session_group.topics
                        ],
                    }
                    for session_group in group.sessions
                ],
            }
            for group in parsed.groups
        ],
    }


@router.post("/parse")
async def parse_backup_file(file: UploadFile = File(...)):
    """
    Parse an uploaded LobeChat backup.

    Args:
        file: Backup JSON export

    Returns:
        Stats and the assistant -> session -> topic tree
    """
    parsed = await read_backup_upload(file)
    return summarize_tree(parsed)
