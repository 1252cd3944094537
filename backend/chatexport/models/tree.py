"""
Tree Models - Read-only projections built from a parsed backup.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .backup import LobeAgent, LobeMessage, LobeSession, LobeTopic


@dataclass
class TopicGroup:
    """A topic with its messages in chronological order."""
    topic_id: str
    topic_label: str
    topic: Optional[LobeTopic]
    messages: List[LobeMessage] = field(default_factory=list)


@dataclass
class SessionGroup:
    """A session with its topic groups in chronological order."""
    session_id: str
    session_label: str
    session: Optional[LobeSession]
    topics: List[TopicGroup] = field(default_factory=list)


@dataclass
class AgentGroup:
    """An assistant with its session groups in chronological order."""
    agent_id: str
    agent_label: str
    agent: Optional[LobeAgent]
    sessions: List[SessionGroup] = field(default_factory=list)

    def iter_topics(self):
        """Yield (session_group, topic_group) pairs in tree order."""
        for session_group in self.sessions:
            for topic_group in session_group.topics:
                yield session_group, topic_group


@dataclass
class BackupStats:
    """Counts shown for an uploaded backup."""
    agent_count: int = 0
    session_count: int = 0
    topic_count: int = 0
    message_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "agentCount": self.agent_count,
            "sessionCount": self.session_count,
            "topicCount": self.topic_count,
            "messageCount": self.message_count,
        }


@dataclass
class ParsedBackup:
    """Everything derived from one backup document."""
    agents: Dict[str, LobeAgent]
    sessions: Dict[str, LobeSession]
    topics: Dict[str, LobeTopic]
    messages_by_topic: Dict[str, List[LobeMessage]]
    groups: List[AgentGroup]
    stats: BackupStats
    source_file_name: Optional[str] = None
    raw: Any = None
