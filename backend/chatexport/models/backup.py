"""
Backup Models - Records found in a LobeChat backup export.

Field names follow the camelCase keys of the export file; Python code uses
the snake_case attribute names.
"""

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_text(value: Any) -> Any:
    """Numbers are accepted for ids and timestamps and kept as strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


class BackupRecord(BaseModel):
    """Common configuration for backup records."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator("id", "created_at", "updated_at", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _coerce_text(value)

    @property
    def sort_key(self) -> str:
        """Ordering key compared lexicographically: createdAt, updatedAt, then id."""
        return self.created_at or self.updated_at or self.id


class LobeAgent(BackupRecord):
    """An assistant (agent) configuration."""
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    system_role: Optional[str] = Field(default=None, alias="systemRole")
    model: Optional[str] = None
    provider: Optional[str] = None


class LobeSession(BackupRecord):
    """A conversation thread."""
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None


class LobeTopic(BackupRecord):
    """A titled sub-thread of a session."""
    title: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    @field_validator("session_id", mode="before")
    @classmethod
    def _session_ref(cls, value: Any) -> Any:
        return _coerce_text(value)


class LobeMessage(BackupRecord):
    """One turn of a topic."""
    role: str = "other"
    content: Any = None
    reasoning: Any = None
    search: Any = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    topic_id: Optional[str] = Field(default=None, alias="topicId")

    @field_validator("session_id", "topic_id", mode="before")
    @classmethod
    def _refs(cls, value: Any) -> Any:
        return _coerce_text(value)


class AgentSessionLink(BaseModel):
    """Row of the agentsToSessions link table."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    agent_id: Optional[str] = Field(default=None, alias="agentId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    @field_validator("agent_id", "session_id", mode="before")
    @classmethod
    def _refs(cls, value: Any) -> Any:
        return _coerce_text(value)
